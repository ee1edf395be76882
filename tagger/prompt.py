# =============================================================================
# Closet Tagger VLM - Prompt Builder and Templates
# =============================================================================
# Provides the versioned tagging templates (system instruction, user
# instruction, "no clothing" sentinel, word limit) and the PromptBuilder that
# turns a template plus a run-time image into an ordered, engine-agnostic
# conversation: an optional system turn followed by a user turn carrying the
# image and the literal guidance text.
#
# The instruction wording changed several times while tuning the model, so
# every piece of it is data here rather than being baked into the engines.
# =============================================================================

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

# User guidance used when a template carries no user instruction of its own
DEFAULT_USER_INSTRUCTION = "Identify the clothing item in this image."


@dataclass(frozen=True)
class PromptTemplate:
    """
    A versioned tagging instruction set.

    Attributes:
        version:            Template identifier (e.g. "v2").
        system_instruction: Fixed tagging instruction for the system turn.
                            Empty means the prompt has no system turn.
        user_instruction:   Guidance text placed after the image.
        sentinel:           Literal the model must answer when no clothing
                            is visible.
        max_words:          Word cap enforced on the normalized tag.
    """

    version: str
    system_instruction: str
    user_instruction: str
    sentinel: str
    max_words: int


_TEMPLATES: Dict[str, PromptTemplate] = {
    "v1": PromptTemplate(
        version="v1",
        system_instruction=(
            "You are a strict clothing identification AI.\n"
            "- If the image contains clothing, respond with the name of the "
            "clothing in three words or fewer.\n"
            "- If no clothing is detected, respond only with 'nil'.\n"
            "- Do not provide additional text, explanations, or symbols."
        ),
        user_instruction=(
            "Identify the clothing in this image using three words or fewer. "
            "If no clothing is present, return 'nil' only."
        ),
        sentinel="nil",
        max_words=3,
    ),
    "v2": PromptTemplate(
        version="v2",
        system_instruction=(
            "You are a strict clothing identification AI.\n"
            "1. Check if the image contains a clothing item.\n"
            "2. If yes, return the clothing type in at most 4 words.\n"
            "3. If not, return 'null'.\n"
            "Do not provide additional text, explanations, or symbols."
        ),
        user_instruction=(
            "Name the clothing item in this image in four words or fewer. "
            "If there is no clothing, answer 'null' only."
        ),
        sentinel="null",
        max_words=4,
    ),
    "v3": PromptTemplate(
        version="v3",
        system_instruction=(
            "You are a fashion cataloguing assistant.\n"
            "Describe the main clothing item with exactly this structure: "
            "<color> <fabric> <item type>, for example 'navy denim jacket' or "
            "'white cotton t-shirt'. Use at most 4 words.\n"
            "If the image contains no clothing, answer only with 'null'.\n"
            "Never add explanations, punctuation, or extra sentences."
        ),
        user_instruction="Tag the clothing item: color, fabric, and type.",
        sentinel="null",
        max_words=4,
    ),
}

DEFAULT_TEMPLATE_VERSION = "v2"


def get_template(version: str = DEFAULT_TEMPLATE_VERSION) -> PromptTemplate:
    """
    Look up a built-in template by version.

    Raises:
        KeyError: If the version is unknown.
    """
    try:
        return _TEMPLATES[version]
    except KeyError:
        raise KeyError(
            f"Unknown prompt template '{version}'. Available: {sorted(_TEMPLATES)}"
        ) from None


def available_templates() -> Tuple[str, ...]:
    return tuple(sorted(_TEMPLATES))


# ---------------------------------------------------------------------------
# Structured conversation
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    # Opaque to the core; the engines expect a PIL image
    image: Any = field(compare=False)


Part = Union[TextPart, ImagePart]


@dataclass(frozen=True)
class Turn:
    role: str  # "system" | "user"
    parts: Tuple[Part, ...]

    @property
    def text(self) -> str:
        """All text parts of the turn joined with newlines."""
        return "\n".join(p.text for p in self.parts if isinstance(p, TextPart))


@dataclass(frozen=True)
class StructuredPrompt:
    """Ordered conversation turns handed to the inference engine."""

    turns: Tuple[Turn, ...]

    @property
    def system_turn(self) -> Optional[Turn]:
        for turn in self.turns:
            if turn.role == "system":
                return turn
        return None

    @property
    def user_turn(self) -> Turn:
        for turn in self.turns:
            if turn.role == "user":
                return turn
        raise ValueError("Prompt has no user turn")

    @property
    def image(self) -> Any:
        for part in self.user_turn.parts:
            if isinstance(part, ImagePart):
                return part.image
        return None


class PromptBuilder:
    """
    Assemble the tagging conversation for one image.

    Pure and deterministic: no I/O, and the template is never modified.
    """

    def build(self, image: Any, template: PromptTemplate) -> StructuredPrompt:
        """
        Build the structured prompt.

        Layout:
            [system: template.system_instruction]   (only when non-empty)
            [user:   <image>, template.user_instruction or the default]

        Args:
            image:    Run-time image (PIL image for the bundled engines).
            template: Instruction template to apply.

        Returns:
            StructuredPrompt with one or two turns.
        """
        turns = []

        system_text = (template.system_instruction or "").strip()
        if system_text:
            turns.append(Turn(role="system", parts=(TextPart(system_text),)))

        user_text = (template.user_instruction or "").strip() or DEFAULT_USER_INSTRUCTION
        turns.append(Turn(role="user", parts=(ImagePart(image), TextPart(user_text))))

        return StructuredPrompt(turns=tuple(turns))
