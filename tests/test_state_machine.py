from commerce_channel.services.state_machine import (
    AttentionMode,
    DecisionReason,
    attention_mode,
    decide,
)


class TestAttentionMode:
    def test_true_is_human(self):
        assert attention_mode(True) == AttentionMode.HUMAN

    def test_false_is_ai(self):
        assert attention_mode(False) == AttentionMode.AI

    def test_none_is_unknown(self):
        assert attention_mode(None) == AttentionMode.UNKNOWN


class TestDecide:
    def test_human_never_invokes_agent(self):
        decision = decide(True, "Hola")
        assert decision.invoke_agent is False
        assert decision.reason == DecisionReason.HUMAN_ATTENTION

    def test_unknown_never_invokes_agent(self):
        decision = decide(None, "Hola")
        assert decision.mode == AttentionMode.UNKNOWN
        assert decision.invoke_agent is False
        assert decision.reason == DecisionReason.UNKNOWN_ATTENTION

    def test_ai_with_blank_text(self):
        decision = decide(False, "   ")
        assert decision.invoke_agent is False
        assert decision.reason == DecisionReason.EMPTY_MESSAGE

    def test_ai_with_none_text(self):
        assert decide(False, None).invoke_agent is False

    def test_ai_with_text_invokes_agent(self):
        decision = decide(False, "¿Cuánto cuesta el asador?")
        assert decision.mode == AttentionMode.AI
        assert decision.invoke_agent is True
        assert decision.reason.value == "ai_attention"
