"""Tests for chat prompt rendering."""

from __future__ import annotations

import pytest

from gguf_gateway.core.constants import DEFAULT_CHAT_STOP_SEQUENCES
from gguf_gateway.models.requests import ChatMessage
from gguf_gateway.services.prompts import (
    build_chat_prompt,
    format_for_family,
    guess_family,
)


CONVERSATION = [
    ChatMessage(role="system", content="Be brief."),
    ChatMessage(role="user", content="Hi"),
    ChatMessage(role="assistant", content="Hello!"),
    ChatMessage(role="user", content="Bye"),
]


class TestGuessFamily:
    @pytest.mark.parametrize(
        ("name", "family"),
        [
            ("Meta-Llama-3-8B-Instruct.Q4_K_M.gguf", "llama3"),
            ("llama-2-7b-chat", "llama"),
            ("tinyllama", "llama"),
            ("mixtral-8x7b", "mixtral"),
            ("mistral-7b-instruct-v0.2", "mistral"),
            ("qwen2.5-7b", "qwen"),
            ("phi-4", "phi"),
            ("gemma-2-9b-it", "gemma"),
            ("deepseek-coder-6.7b-instruct", "deepseek"),
            ("zephyr-7b-beta", "zephyr"),
            ("vicuna-13b-v1.5", "vicuna"),
            ("WizardLM-13B", "wizardlm"),
            ("stablelm-2-1_6b-chat", "stablelm"),
            ("c4ai-command-r-v01", "command-r"),
            ("orca-2-7b", "orca"),
            ("solar-10.7b-instruct", "solar"),
            ("nomic-embed-text", "unknown"),
        ],
    )
    def test_markers(self, name: str, family: str) -> None:
        assert guess_family(name) == family


class TestFormatForFamily:
    @pytest.mark.parametrize(
        ("family", "format_name"),
        [
            ("llama3", "llama3"),
            ("llama", "llama2"),
            ("mixtral", "mistral"),
            ("qwen", "chatml"),
            ("nous-hermes", "chatml"),
            ("phi", "phi"),
            ("gemma", "gemma"),
            ("llama-3.1", "llama3"),
            ("guanaco", "alpaca"),
            ("wizardlm", "alpaca"),
            ("orca", "alpaca"),
            ("solar", "alpaca"),
            ("dolly", "alpaca"),
            ("claude", "human_assistant"),
            ("anthropic", "human_assistant"),
            ("zephyr", "zephyr"),
            ("deepseek-coder", "deepseek"),
            ("command-r-plus", "command_r"),
            ("vicuna", "vicuna"),
            ("stablelm", "stablelm"),
            ("starling", "chatml"),
            ("Mistral-Nemo", "mistral"),
            ("falcon", "simple"),
            ("unknown", "simple"),
            (None, "simple"),
        ],
    )
    def test_mapping(self, family: str | None, format_name: str) -> None:
        assert format_for_family(family).name == format_name


class TestRender:
    def test_simple(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION, "unknown")

        assert prompt == "system: Be brief.\nuser: Hi\nassistant: Hello!\nuser: Bye\nassistant:"
        assert stops == DEFAULT_CHAT_STOP_SEQUENCES

    def test_chatml(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION[:2], "qwen")

        assert prompt == (
            "<|im_start|>system\nBe brief.<|im_end|>\n"
            "<|im_start|>user\nHi<|im_end|>\n"
            "<|im_start|>assistant\n"
        )
        assert stops == ("<|im_end|>",)

    def test_llama3_ends_with_assistant_header(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION, "llama3")

        assert prompt.startswith("<|begin_of_text|>")
        assert prompt.endswith("<|start_header_id|>assistant<|end_header_id|>\n\n")
        assert prompt.count("<|eot_id|>") == 4

    def test_llama2_system_folded_into_first_turn(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION, "llama")

        assert prompt == (
            "<s>[INST] <<SYS>>\nBe brief.\n<</SYS>>\n\nHi [/INST] Hello! </s>"
            "<s>[INST] Bye [/INST]"
        )

    def test_mistral(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION, "mistral")

        assert prompt == "<s>[INST] Be brief.\n\nHi [/INST]Hello!</s>[INST] Bye [/INST]"

    def test_phi(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION[1:2], "phi")

        assert prompt == "<|user|>\nHi<|end|>\n<|assistant|>\n"
        assert stops == ("<|end|>",)

    def test_gemma_uses_model_speaker(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION, "gemma")

        assert prompt.startswith("<start_of_turn>user\nBe brief.\n\nHi<end_of_turn>\n")
        assert "<start_of_turn>model\nHello!<end_of_turn>\n" in prompt
        assert prompt.endswith("<start_of_turn>model\n")

    def test_missing_content_rendered_empty(self) -> None:
        prompt, _ = build_chat_prompt([ChatMessage(role="User", content=None)], "unknown")

        assert prompt == "user: \nassistant:"

    def test_alpaca(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION, "alpaca")

        assert prompt == (
            "### System:\nBe brief.\n\n"
            "### Instruction:\nHi\n\n"
            "### Response:\nHello!\n\n"
            "### Instruction:\nBye\n\n"
            "### Response:\n"
        )
        assert stops == ("### Instruction:",)

    def test_alpaca_without_system(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION[1:2], "orca")

        assert prompt == "### Instruction:\nHi\n\n### Response:\n"

    def test_human_assistant(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION, "claude")

        assert prompt == (
            "System: Be brief.\n\nHuman: Hi\n\nAssistant: Hello!\n\nHuman: Bye\n\nAssistant:"
        )
        assert stops == ("\n\nHuman:",)

    def test_zephyr(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION[:2], "zephyr")

        assert prompt == "<|system|>\nBe brief.</s>\n<|user|>\nHi</s>\n<|assistant|>\n"
        assert stops == ("</s>",)

    def test_deepseek(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION, "deepseek")

        assert prompt == (
            "System: Be brief.\n\nUser: Hi\n\nAssistant: Hello!\n\nUser: Bye\n\nAssistant: "
        )
        assert stops == ("\n\nUser:",)

    def test_command_r(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION[:3], "command-r")

        assert prompt == (
            "<BOS_TOKEN>"
            "<|START_OF_TURN_TOKEN|><|SYSTEM_TOKEN|>Be brief.<|END_OF_TURN_TOKEN|>"
            "<|START_OF_TURN_TOKEN|><|USER_TOKEN|>Hi<|END_OF_TURN_TOKEN|>"
            "<|START_OF_TURN_TOKEN|><|CHATBOT_TOKEN|>Hello!<|END_OF_TURN_TOKEN|>"
            "<|START_OF_TURN_TOKEN|><|CHATBOT_TOKEN|>"
        )
        assert stops == ("<|END_OF_TURN_TOKEN|>",)

    def test_vicuna_system_as_preamble(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION, "vicuna")

        assert prompt == "Be brief.\n\nUSER: Hi\nASSISTANT: Hello!\nUSER: Bye\nASSISTANT:"
        assert stops == ("USER:",)

    def test_vicuna_default_preamble(self) -> None:
        prompt, _ = build_chat_prompt(CONVERSATION[1:2], "vicuna")

        assert prompt == "A chat between a user and an assistant.\n\nUSER: Hi\nASSISTANT:"

    def test_stablelm(self) -> None:
        prompt, stops = build_chat_prompt(CONVERSATION[:2], "stablelm")

        assert prompt == "<|SYSTEM|>Be brief.\n<|USER|>Hi\n<|ASSISTANT|>"
        assert stops == ("<|USER|>",)
