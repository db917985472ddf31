from adasline.states import AssistantKind, CallPhase


class TestAssistantKind:
    def test_voices(self):
        assert AssistantKind.OPS.voice == "shimmer"
        assert AssistantKind.TECH.voice == "cedar"

    def test_values(self):
        assert AssistantKind("ops") is AssistantKind.OPS
        assert AssistantKind("tech") is AssistantKind.TECH


class TestCallPhase:
    def test_open_phases(self):
        for phase in (CallPhase.CONNECTING, CallPhase.CONFIGURED, CallPhase.ACTIVE):
            assert phase.is_open
            assert not phase.is_terminal

    def test_terminal_phases(self):
        for phase in (CallPhase.TRANSFERRING, CallPhase.CLOSED):
            assert phase.is_terminal
            assert not phase.is_open
