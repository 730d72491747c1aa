"""
PromptTemplate - reusable prompts with {{variable}} placeholders.

Provides the placeholder scanner and interpolate() substitution function,
and the PromptTemplate class that pairs a body with default values and
supports composition and JSON persistence.
"""
import re
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .errors import InvalidArgumentError, MalformedDataError, MissingVariablesError
from .options import PromptOptions
from .serialization import (
    PathLike,
    dump_json,
    load_json_object,
    read_text_file,
    require_string_map,
    write_text_file,
)

if TYPE_CHECKING:
    from .conversation import Conversation
    from .llm.base import LLMSender


VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def find_variables(template: str) -> list[str]:
    """Return the distinct placeholder names in first-appearance order.

    Example:
        >>> find_variables("{{a}} and {{b}} and {{a}}")
        ['a', 'b']
    """
    return list(dict.fromkeys(m.group(1) for m in VARIABLE_PATTERN.finditer(template)))


def interpolate(
    template: str,
    variables: Mapping[str, str],
    strict: bool = True,
    template_location: Optional[str] = None,
) -> str:
    """Interpolate variables into a template string.

    Replaces {{variable}} placeholders with the corresponding values. All
    occurrences of a name get the same value, and substituted text is not
    scanned again.

    Args:
        template: The template string containing {{variable}} placeholders.
        variables: Mapping of variable names to their values.
        strict: If True, any placeholder without a value raises
            MissingVariablesError naming every such placeholder. If False,
            unresolved placeholders are left verbatim.
        template_location: Optional location string for error messages.

    Returns:
        The template with placeholders replaced.

    Raises:
        MissingVariablesError: In strict mode, if any placeholder is unresolved.

    Example:
        >>> interpolate("Hello, {{name}}!", {"name": "World"})
        'Hello, World!'

        >>> interpolate("Hello, {{name}}!", {}, strict=False)
        'Hello, {{name}}!'
    """
    missing: list[str] = []

    def replace_var(match: re.Match) -> str:
        var_name = match.group(1)

        if var_name in variables:
            return variables[var_name]
        if strict and var_name not in missing:
            missing.append(var_name)
        return match.group(0)

    result = VARIABLE_PATTERN.sub(replace_var, template)

    if missing:
        raise MissingVariablesError(missing, template_location)
    return result


class PromptTemplate:
    """A prompt body with {{name}} placeholders and default values.

    The body never changes after construction. Defaults may be added,
    overwritten or removed; variable introspection always reflects the
    current defaults.

    Example:
        template = PromptTemplate(
            "You are a {{role}} assistant. Help the user with {{topic}}.",
            {"role": "helpful"},
        )
        template.render({"topic": "Python"})
        # 'You are a helpful assistant. Help the user with Python.'
    """

    def __init__(self, template: str, defaults: Optional[Mapping[str, str]] = None) -> None:
        """Initialize the template.

        Args:
            template: Body text with {{variable}} placeholders.
            defaults: Optional fallback values, copied.

        Raises:
            InvalidArgumentError: If the body is empty or whitespace-only.
        """
        if not isinstance(template, str) or not template.strip():
            raise InvalidArgumentError("Template cannot be null or empty.")

        self._template = template
        self._defaults: dict[str, str] = dict(defaults) if defaults else {}
        self._source: Optional[str] = None

    @property
    def template(self) -> str:
        """The raw template body."""
        return self._template

    @property
    def defaults(self) -> dict[str, str]:
        """A copy of the current default values."""
        return dict(self._defaults)

    @property
    def source(self) -> Optional[str]:
        """Path of the file this template was loaded from, if any."""
        return self._source

    def get_variables(self) -> list[str]:
        """Return every placeholder name in the body, in first-appearance order."""
        return find_variables(self._template)

    def get_required_variables(self) -> list[str]:
        """Return the placeholder names that have no default value."""
        return [name for name in self.get_variables() if name not in self._defaults]

    def set_default(self, name: str, value: Optional[str]) -> None:
        """Set or replace the default value of a variable.

        Raises:
            InvalidArgumentError: If name is empty.
        """
        if not isinstance(name, str) or not name.strip():
            raise InvalidArgumentError("Variable name cannot be null or empty.")
        self._defaults[name] = value if value is not None else ""

    def remove_default(self, name: str) -> bool:
        """Remove a default, making the variable required again.

        Returns:
            True if a default was removed, False if there was none.
        """
        if name not in self._defaults:
            return False
        del self._defaults[name]
        return True

    def render(self, variables: Optional[Mapping[str, str]] = None, strict: bool = True) -> str:
        """Render the template.

        Args:
            variables: Values for placeholders. They take precedence over
                defaults for the same key.
            strict: When True, raise if any placeholder has neither a value
                nor a default. When False, leave such placeholders as-is.

        Returns:
            The rendered prompt.

        Raises:
            MissingVariablesError: In strict mode, listing every unresolved
                placeholder and, for a loaded template, its source file.
        """
        merged = dict(self._defaults)
        if variables:
            merged.update(variables)
        return interpolate(self._template, merged, strict=strict, template_location=self._source)

    async def render_and_send(
        self,
        sender: "LLMSender",
        variables: Optional[Mapping[str, str]] = None,
        *,
        system_prompt: Optional[str] = None,
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
    ) -> Optional[str]:
        """Render strictly and send the result as a single prompt.

        Returns:
            The model's response text, or None if nothing was generated.
        """
        rendered = self.render(variables)
        return await sender.send(
            rendered,
            system_prompt=system_prompt,
            options=options,
            max_retries=max_retries,
        )

    async def send_in(
        self,
        conversation: "Conversation",
        variables: Optional[Mapping[str, str]] = None,
    ) -> Optional[str]:
        """Render strictly and send the result as the next conversation turn."""
        if conversation is None:
            raise InvalidArgumentError("conversation is required")
        rendered = self.render(variables)
        return await conversation.send(rendered)

    def compose(self, other: "PromptTemplate", separator: str = "\n\n") -> "PromptTemplate":
        """Combine this template with another.

        Bodies are joined with the separator and defaults are merged, with
        the other template's values winning on conflict. Neither operand
        is modified.

        Args:
            other: The template to append.
            separator: Text placed between the two bodies.

        Returns:
            A new PromptTemplate.
        """
        if not isinstance(other, PromptTemplate):
            raise InvalidArgumentError("Can only compose with another PromptTemplate")

        merged_defaults = dict(self._defaults)
        merged_defaults.update(other._defaults)
        return PromptTemplate(self._template + separator + other._template, merged_defaults)

    def to_dict(self) -> dict[str, Any]:
        return {"template": self._template, "defaults": dict(self._defaults)}

    @classmethod
    def from_dict(cls, data: Any) -> "PromptTemplate":
        """Build a template from its persisted dictionary form.

        Raises:
            MalformedDataError: If 'template' is missing, empty or not a
                string, or 'defaults' is not an object of strings.
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid template data: expected an object")

        body = data.get("template")
        if not isinstance(body, str) or not body.strip():
            raise MalformedDataError("Invalid template JSON: missing template field.")

        defaults = require_string_map(data.get("defaults"), "defaults")
        return cls(body, defaults)

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "PromptTemplate":
        """Deserialize a template from JSON text."""
        return cls.from_dict(load_json_object(text, "template"))

    def save(self, path: PathLike, indent: Optional[int] = 2) -> None:
        """Save the template to a JSON file."""
        write_text_file(path, self.to_json(indent=indent))

    @classmethod
    def load(cls, path: PathLike) -> "PromptTemplate":
        """Load a template from a JSON file and remember its path."""
        template = cls.from_json(read_text_file(path))
        template._source = str(path)
        return template

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, PromptTemplate):
            return NotImplemented
        return self._template == other._template and self._defaults == other._defaults

    def __str__(self) -> str:
        return self._template

    def __repr__(self) -> str:
        return f"PromptTemplate({self._template!r}, defaults={self._defaults!r})"
