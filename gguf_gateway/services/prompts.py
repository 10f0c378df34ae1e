"""Chat prompt rendering.

The engine contract is prompt-in, text-out, so chat requests are flattened
into a single prompt using the template of the model's family. Each format
also carries the stop sequences that end an assistant turn.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Protocol

from gguf_gateway.core.constants import DEFAULT_CHAT_STOP_SEQUENCES


class ChatTurn(Protocol):
    role: str
    content: str | None


FORMAT_SIMPLE = "simple"
FORMAT_CHATML = "chatml"
FORMAT_LLAMA2 = "llama2"
FORMAT_LLAMA3 = "llama3"
FORMAT_MISTRAL = "mistral"
FORMAT_PHI = "phi"
FORMAT_GEMMA = "gemma"
FORMAT_ALPACA = "alpaca"
FORMAT_HUMAN_ASSISTANT = "human_assistant"
FORMAT_ZEPHYR = "zephyr"
FORMAT_DEEPSEEK = "deepseek"
FORMAT_COMMAND_R = "command_r"
FORMAT_VICUNA = "vicuna"
FORMAT_STABLELM = "stablelm"

UNKNOWN_FAMILY = "unknown"

VICUNA_PREAMBLE = "A chat between a user and an assistant."


# =============================================================================
# Renderers
# =============================================================================


def _turns(messages: Sequence[ChatTurn]) -> list[tuple[str, str]]:
    return [(m.role.strip().lower() or "user", m.content or "") for m in messages]


def _split_system(turns: list[tuple[str, str]]) -> tuple[str, list[tuple[str, str]]]:
    system = "\n".join(c for r, c in turns if r == "system")
    return system, [(r, c) for r, c in turns if r != "system"]


def render_simple(messages: Sequence[ChatTurn]) -> str:
    lines = [f"{role}: {content}" for role, content in _turns(messages)]
    lines.append("assistant:")
    return "\n".join(lines)


def render_chatml(messages: Sequence[ChatTurn]) -> str:
    parts = [f"<|im_start|>{r}\n{c}<|im_end|>\n" for r, c in _turns(messages)]
    parts.append("<|im_start|>assistant\n")
    return "".join(parts)


def render_llama3(messages: Sequence[ChatTurn]) -> str:
    parts = ["<|begin_of_text|>"]
    for role, content in _turns(messages):
        parts.append(f"<|start_header_id|>{role}<|end_header_id|>\n\n{content}<|eot_id|>")
    parts.append("<|start_header_id|>assistant<|end_header_id|>\n\n")
    return "".join(parts)


def render_llama2(messages: Sequence[ChatTurn]) -> str:
    system, turns = _split_system(_turns(messages))
    parts: list[str] = []
    first_user = True
    for role, content in turns:
        if role == "assistant":
            parts.append(f" {content} </s>")
            continue
        if first_user and system:
            content = f"<<SYS>>\n{system}\n<</SYS>>\n\n{content}"
        first_user = False
        parts.append(f"<s>[INST] {content} [/INST]")
    return "".join(parts)


def render_mistral(messages: Sequence[ChatTurn]) -> str:
    system, turns = _split_system(_turns(messages))
    parts = ["<s>"]
    first_user = True
    for role, content in turns:
        if role == "assistant":
            parts.append(f"{content}</s>")
            continue
        if first_user and system:
            content = f"{system}\n\n{content}"
        first_user = False
        parts.append(f"[INST] {content} [/INST]")
    return "".join(parts)


def render_phi(messages: Sequence[ChatTurn]) -> str:
    parts = [f"<|{r}|>\n{c}<|end|>\n" for r, c in _turns(messages)]
    parts.append("<|assistant|>\n")
    return "".join(parts)


def render_alpaca(messages: Sequence[ChatTurn]) -> str:
    system, turns = _split_system(_turns(messages))
    parts = [f"### System:\n{system}\n\n"] if system else []
    for role, content in turns:
        header = "### Response:" if role == "assistant" else "### Instruction:"
        parts.append(f"{header}\n{content}\n\n")
    parts.append("### Response:\n")
    return "".join(parts)


def render_human_assistant(messages: Sequence[ChatTurn]) -> str:
    labels = {"system": "System", "assistant": "Assistant"}
    parts = [f"{labels.get(r, 'Human')}: {c}\n\n" for r, c in _turns(messages)]
    parts.append("Assistant:")
    return "".join(parts)


def render_zephyr(messages: Sequence[ChatTurn]) -> str:
    parts = [f"<|{r}|>\n{c}</s>\n" for r, c in _turns(messages)]
    parts.append("<|assistant|>\n")
    return "".join(parts)


def render_deepseek(messages: Sequence[ChatTurn]) -> str:
    labels = {"system": "System", "assistant": "Assistant"}
    parts = [f"{labels.get(r, 'User')}: {c}\n\n" for r, c in _turns(messages)]
    parts.append("Assistant: ")
    return "".join(parts)


def render_command_r(messages: Sequence[ChatTurn]) -> str:
    system, turns = _split_system(_turns(messages))
    parts = ["<BOS_TOKEN>"]
    if system:
        parts.append(f"<|START_OF_TURN_TOKEN|><|SYSTEM_TOKEN|>{system}<|END_OF_TURN_TOKEN|>")
    for role, content in turns:
        token = "<|CHATBOT_TOKEN|>" if role == "assistant" else "<|USER_TOKEN|>"
        parts.append(f"<|START_OF_TURN_TOKEN|>{token}{content}<|END_OF_TURN_TOKEN|>")
    parts.append("<|START_OF_TURN_TOKEN|><|CHATBOT_TOKEN|>")
    return "".join(parts)


def render_vicuna(messages: Sequence[ChatTurn]) -> str:
    system, turns = _split_system(_turns(messages))
    parts = [f"{system or VICUNA_PREAMBLE}\n\n"]
    for role, content in turns:
        speaker = "ASSISTANT" if role == "assistant" else "USER"
        parts.append(f"{speaker}: {content}\n")
    parts.append("ASSISTANT:")
    return "".join(parts)


def render_stablelm(messages: Sequence[ChatTurn]) -> str:
    labels = {"system": "SYSTEM", "assistant": "ASSISTANT"}
    parts = [f"<|{labels.get(r, 'USER')}|>{c}\n" for r, c in _turns(messages)]
    parts.append("<|ASSISTANT|>")
    return "".join(parts)


def render_gemma(messages: Sequence[ChatTurn]) -> str:
    # Gemma has no system role; it is prepended to the first user turn
    system, turns = _split_system(_turns(messages))
    parts: list[str] = []
    for role, content in turns:
        if system and role == "user":
            content = f"{system}\n\n{content}"
            system = ""
        speaker = "model" if role == "assistant" else "user"
        parts.append(f"<start_of_turn>{speaker}\n{content}<end_of_turn>\n")
    parts.append("<start_of_turn>model\n")
    return "".join(parts)


# =============================================================================
# Formats
# =============================================================================


@dataclass(frozen=True)
class ChatFormat:
    name: str
    render: Callable[[Sequence[ChatTurn]], str]
    stop_sequences: tuple[str, ...]


CHAT_FORMATS: dict[str, ChatFormat] = {
    FORMAT_SIMPLE: ChatFormat(FORMAT_SIMPLE, render_simple, DEFAULT_CHAT_STOP_SEQUENCES),
    FORMAT_CHATML: ChatFormat(FORMAT_CHATML, render_chatml, ("<|im_end|>",)),
    FORMAT_LLAMA2: ChatFormat(FORMAT_LLAMA2, render_llama2, ("[INST]",)),
    FORMAT_LLAMA3: ChatFormat(FORMAT_LLAMA3, render_llama3, ("<|eot_id|>",)),
    FORMAT_MISTRAL: ChatFormat(FORMAT_MISTRAL, render_mistral, ("[INST]",)),
    FORMAT_PHI: ChatFormat(FORMAT_PHI, render_phi, ("<|end|>",)),
    FORMAT_GEMMA: ChatFormat(FORMAT_GEMMA, render_gemma, ("<end_of_turn>",)),
    FORMAT_ALPACA: ChatFormat(FORMAT_ALPACA, render_alpaca, ("### Instruction:",)),
    FORMAT_HUMAN_ASSISTANT: ChatFormat(
        FORMAT_HUMAN_ASSISTANT, render_human_assistant, ("\n\nHuman:",)
    ),
    FORMAT_ZEPHYR: ChatFormat(FORMAT_ZEPHYR, render_zephyr, ("</s>",)),
    FORMAT_DEEPSEEK: ChatFormat(FORMAT_DEEPSEEK, render_deepseek, ("\n\nUser:",)),
    FORMAT_COMMAND_R: ChatFormat(FORMAT_COMMAND_R, render_command_r, ("<|END_OF_TURN_TOKEN|>",)),
    FORMAT_VICUNA: ChatFormat(FORMAT_VICUNA, render_vicuna, ("USER:",)),
    FORMAT_STABLELM: ChatFormat(FORMAT_STABLELM, render_stablelm, ("<|USER|>",)),
}

# Checked in order against the lower-cased model name; first hit wins
_FAMILY_MARKERS: tuple[tuple[str, str], ...] = (
    ("deepseek", "deepseek"),
    ("zephyr", "zephyr"),
    ("vicuna", "vicuna"),
    ("wizardlm", "wizardlm"),
    ("guanaco", "guanaco"),
    ("alpaca", "alpaca"),
    ("dolly", "dolly"),
    ("stablelm", "stablelm"),
    ("command-r", "command-r"),
    ("claude", "claude"),
    ("starling", "starling"),
    ("solar", "solar"),
    ("llama-3", "llama3"),
    ("llama3", "llama3"),
    ("llama_3", "llama3"),
    ("mixtral", "mixtral"),
    ("mistral", "mistral"),
    ("qwen", "qwen"),
    ("openchat", "openchat"),
    ("hermes", "nous-hermes"),
    ("dolphin", "dolphin"),
    ("yi-", "yi"),
    ("orca", "orca"),
    ("phi", "phi"),
    ("gemma", "gemma"),
    ("llama", "llama"),
)

# Exact family names, including vendor-qualified spellings
_FAMILY_FORMATS: dict[str, str] = {
    **dict.fromkeys(("llama", "llama2", "llama-2"), FORMAT_LLAMA2),
    **dict.fromkeys(("llama-3", "llama3.1", "llama-3.1", "llama3.2", "llama-3.2"), FORMAT_LLAMA3),
    **dict.fromkeys(
        (
            "alpaca", "guanaco", "wizardlm",
            "orca", "orca-2", "microsoft-orca",
            "solar", "solar-10.7b", "upstage-solar",
            "dolly", "dolly-v2", "databricks-dolly",
        ),
        FORMAT_ALPACA,
    ),
    **dict.fromkeys(("vicuna", "vicuna-v1.1", "vicuna-13b", "vicuna-7b"), FORMAT_VICUNA),
    **dict.fromkeys(
        ("mistral", "mixtral", "mistral-7b", "mixtral-8x7b", "mistral-nemo"), FORMAT_MISTRAL
    ),
    **dict.fromkeys(
        ("claude", "anthropic", "claude-2", "claude-3", "claude-instant"), FORMAT_HUMAN_ASSISTANT
    ),
    **dict.fromkeys(("chatgpt", "openai", "01-ai", "starling"), FORMAT_CHATML),
    **dict.fromkeys(("microsoft-phi",), FORMAT_PHI),
    **dict.fromkeys(("zephyr", "huggingfaceh4", "zephyr-7b"), FORMAT_ZEPHYR),
    **dict.fromkeys(
        ("deepseek", "deepseek-coder", "deepseek-chat", "deepseek-llm"), FORMAT_DEEPSEEK
    ),
    **dict.fromkeys(("google-gemma",), FORMAT_GEMMA),
    **dict.fromkeys(("command-r", "command-r-plus", "cohere-command-r"), FORMAT_COMMAND_R),
    **dict.fromkeys(
        ("stablelm", "stability", "stable-lm", "stablelm-3b", "stablelm-7b"), FORMAT_STABLELM
    ),
}

_CHATML_FAMILIES = ("qwen", "yi", "openchat", "nous-hermes", "dolphin", "gpt")


def guess_family(model_name: str) -> str:
    """Infer a model family from its name or file name."""
    lowered = model_name.lower()
    for marker, family in _FAMILY_MARKERS:
        if marker in lowered:
            return family
    return UNKNOWN_FAMILY


def format_for_family(family: str | None) -> ChatFormat:
    family = (family or "").strip().lower()
    name = _FAMILY_FORMATS.get(family)
    if name is not None:
        return CHAT_FORMATS[name]

    if family.startswith("llama3"):
        name = FORMAT_LLAMA3
    elif family.startswith(_CHATML_FAMILIES):
        name = FORMAT_CHATML
    elif family.startswith("phi"):
        name = FORMAT_PHI
    elif family.startswith("gemma"):
        name = FORMAT_GEMMA
    elif family.startswith("deepseek"):
        name = FORMAT_DEEPSEEK
    elif family.startswith("command-r"):
        name = FORMAT_COMMAND_R
    else:
        name = FORMAT_SIMPLE
    return CHAT_FORMATS[name]


def build_chat_prompt(
    messages: Sequence[ChatTurn], family: str | None
) -> tuple[str, tuple[str, ...]]:
    """Render messages for a family.

    Returns:
        (prompt, default stop sequences for that format)
    """
    chat_format = format_for_family(family)
    return chat_format.render(messages), chat_format.stop_sequences
