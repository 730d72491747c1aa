"""
PromptChain - sequential multi-step prompt pipelines.

Each step renders its template against the variables accumulated so far,
sends the result, and stores the response under its output variable for
later steps to use.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Optional, Protocol

from .errors import (
    ChainCancelledError,
    EmptyChainError,
    InvalidArgumentError,
    MalformedDataError,
)
from .llm.base import LLMSender
from .options import PromptOptions
from .serialization import PathLike, dump_json, load_json_object, read_text_file, write_text_file
from .template import PromptTemplate


logger = logging.getLogger(__name__)

EMPTY_CHAIN_MESSAGE = "chain has no steps"


class CancelSignal(Protocol):
    """Anything with an is_set() method, e.g. asyncio.Event or threading.Event."""

    def is_set(self) -> bool:
        ...


def _require_name(value: Any, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidArgumentError(f"{what} cannot be null or empty.")
    return value


@dataclass
class ChainStep:
    """A named step pairing a template with the variable its response fills."""
    name: str
    template: PromptTemplate
    output_variable: str

    def __post_init__(self) -> None:
        _require_name(self.name, "Step name")
        if not isinstance(self.template, PromptTemplate):
            raise InvalidArgumentError("Step template must be a PromptTemplate")
        _require_name(self.output_variable, "Output variable")

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "template": self.template.to_dict(),
            "outputVariable": self.output_variable,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "ChainStep":
        """Build a step from its persisted form.

        Raises:
            MalformedDataError: If name, template or outputVariable is
                missing or invalid.
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid chain step: expected an object")

        name = data.get("name")
        output_variable = data.get("outputVariable")
        if not isinstance(name, str) or not name.strip():
            raise MalformedDataError("Invalid chain step: 'name' is required")
        if not isinstance(output_variable, str) or not output_variable.strip():
            raise MalformedDataError(f"Invalid chain step '{name}': 'outputVariable' is required")
        if "template" not in data:
            raise MalformedDataError(f"Invalid chain step '{name}': 'template' is required")

        return cls(name, PromptTemplate.from_dict(data["template"]), output_variable)


@dataclass(frozen=True)
class StepResult:
    """Record of one executed step.

    Attributes:
        step_name: Name of the step.
        output_variable: Variable the response was stored under.
        rendered_prompt: Prompt text after substitution.
        response: Response text, or None if no content was generated.
        elapsed: Seconds spent waiting for the response.
    """
    step_name: str
    output_variable: str
    rendered_prompt: str
    response: Optional[str]
    elapsed: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepName": self.step_name,
            "outputVariable": self.output_variable,
            "renderedPrompt": self.rendered_prompt,
            "response": self.response,
            "elapsedMs": round(self.elapsed * 1000, 3),
        }


@dataclass
class ChainResult:
    """Outcome of a completed chain run.

    Holds no reference back to the chain that produced it.
    """
    steps: list[StepResult] = field(default_factory=list)
    variables: dict[str, str] = field(default_factory=dict)
    total_elapsed: float = 0.0

    @property
    def final_response(self) -> Optional[str]:
        """Response of the last executed step."""
        return self.steps[-1].response if self.steps else None

    def get_output(self, variable_name: str) -> Optional[str]:
        """Look up a variable in the final accumulated mapping."""
        return self.variables.get(variable_name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "finalResponse": self.final_response,
            "totalElapsedMs": round(self.total_elapsed * 1000, 3),
            "steps": [step.to_dict() for step in self.steps],
            "variables": dict(self.variables),
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        """Export the result as JSON. There is no matching import."""
        return dump_json(self.to_dict(), indent=indent)


class PromptChain:
    """Runs a sequence of prompt templates, feeding each response forward.

    Builder methods mutate the chain in place and return it, so calls can be
    chained.

    Example:
        chain = (
            PromptChain(sender)
            .with_system_prompt("You are a research assistant.")
            .add_step("summarize", PromptTemplate("Summarize: {{text}}"), "summary")
            .add_step("critique", PromptTemplate("Critique: {{summary}}"), "critique")
        )
        errors = chain.validate({"text": article})
        result = await chain.run({"text": article})
        print(result.final_response)
    """

    def __init__(self, sender: Optional[LLMSender] = None) -> None:
        """Initialize an empty chain.

        Args:
            sender: Sender used by run(). May be omitted for chains that are
                only built, validated or serialized.
        """
        self._sender = sender
        self._steps: list[ChainStep] = []
        self._system_prompt: Optional[str] = None
        self._options: Optional[PromptOptions] = None
        self._max_retries = 3

    @property
    def sender(self) -> Optional[LLMSender]:
        return self._sender

    @sender.setter
    def sender(self, value: Optional[LLMSender]) -> None:
        self._sender = value

    @property
    def steps(self) -> tuple[ChainStep, ...]:
        return tuple(self._steps)

    @property
    def step_count(self) -> int:
        return len(self._steps)

    @property
    def system_prompt(self) -> Optional[str]:
        return self._system_prompt

    @property
    def options(self) -> Optional[PromptOptions]:
        return self._options

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def add_step(self, name: str, template: PromptTemplate, output_variable: str) -> "PromptChain":
        """Append a step.

        Raises:
            InvalidArgumentError: If name or output_variable is empty or
                template is not a PromptTemplate.
        """
        self._steps.append(ChainStep(name, template, output_variable))
        return self

    def with_system_prompt(self, system_prompt: Optional[str]) -> "PromptChain":
        self._system_prompt = system_prompt
        return self

    def with_options(self, options: Optional[PromptOptions]) -> "PromptChain":
        if options is not None and not isinstance(options, PromptOptions):
            raise InvalidArgumentError("options must be a PromptOptions instance")
        self._options = options
        return self

    def with_max_retries(self, max_retries: int) -> "PromptChain":
        """Set the retry budget passed to the sender for every step.

        Raises:
            InvalidArgumentError: If max_retries is negative or not an int.
        """
        if isinstance(max_retries, bool) or not isinstance(max_retries, int):
            raise InvalidArgumentError(f"max_retries must be an integer, got {max_retries!r}")
        if max_retries < 0:
            raise InvalidArgumentError(f"max_retries must be non-negative, got {max_retries}")
        self._max_retries = max_retries
        return self

    def validate(self, initial_variables: Optional[Mapping[str, str]] = None) -> list[str]:
        """Check that every step's required variables will be available.

        Walks the steps in order without sending anything. A step's output
        variable counts as available for later steps even when the step
        itself has gaps, so each missing variable is reported once.

        Args:
            initial_variables: Variables that will be passed to run().

        Returns:
            Error messages in step order; empty if the chain can run.
        """
        if not self._steps:
            return [EMPTY_CHAIN_MESSAGE]

        errors: list[str] = []
        known = set(initial_variables or {})

        for step in self._steps:
            for var in step.template.get_required_variables():
                if var not in known:
                    errors.append(
                        f"step '{step.name}' requires '{var}' which is not "
                        f"provided by input or a prior step"
                    )
            known.add(step.output_variable)

        return errors

    async def run(
        self,
        initial_variables: Optional[Mapping[str, str]] = None,
        *,
        cancel_event: Optional[CancelSignal] = None,
        on_step: Optional[Callable[[StepResult], None]] = None,
    ) -> ChainResult:
        """Execute the steps in order.

        Cancellation is checked before each step starts; a step already
        waiting on the sender is not interrupted by cancel_event. Any error
        aborts the run and no partial result is returned; use on_step to
        observe steps as they complete.

        Args:
            initial_variables: Starting variables, copied.
            cancel_event: Optional signal checked at each step boundary.
            on_step: Optional callback invoked with each completed StepResult.

        Returns:
            The ChainResult for the whole run.

        Raises:
            EmptyChainError: If the chain has no steps.
            InvalidArgumentError: If no sender is configured.
            ChainCancelledError: If cancel_event is set at a step boundary.
            MissingVariablesError: If a step's template cannot be rendered.
            SenderError: Propagated from the sender.
        """
        if not self._steps:
            raise EmptyChainError()
        if self._sender is None:
            raise InvalidArgumentError("PromptChain has no sender; pass one to PromptChain(sender)")

        variables: dict[str, str] = dict(initial_variables or {})
        step_results: list[StepResult] = []
        run_start = time.perf_counter()

        for index, step in enumerate(self._steps, start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Chain cancelled before step '%s'", step.name)
                raise ChainCancelledError(step.name)

            rendered = step.template.render(variables, strict=True)

            step_start = time.perf_counter()
            if rendered.strip():
                logger.debug("Running step %d/%d '%s'", index, len(self._steps), step.name)
                response = await self._sender.send(
                    rendered,
                    self._system_prompt,
                    self._options,
                    self._max_retries,
                )
            else:
                # Nothing to send: an empty upstream response or empty input
                logger.debug("Step '%s' rendered a blank prompt; skipping send", step.name)
                response = None
            elapsed = time.perf_counter() - step_start

            variables[step.output_variable] = response if response is not None else ""

            result = StepResult(
                step_name=step.name,
                output_variable=step.output_variable,
                rendered_prompt=rendered,
                response=response,
                elapsed=elapsed,
            )
            step_results.append(result)
            logger.debug("Step '%s' finished in %.3fs", step.name, elapsed)

            if on_step is not None:
                on_step(result)

        total_elapsed = time.perf_counter() - run_start
        logger.info("Chain finished %d step(s) in %.3fs", len(step_results), total_elapsed)

        return ChainResult(steps=step_results, variables=variables, total_elapsed=total_elapsed)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "systemPrompt": self._system_prompt,
            "maxRetries": self._max_retries,
            "steps": [step.to_dict() for step in self._steps],
        }
        if self._options is not None:
            data["options"] = self._options.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Any, sender: Optional[LLMSender] = None) -> "PromptChain":
        """Build a chain from its persisted dictionary form.

        Raises:
            MalformedDataError: If steps are missing or empty, a step is
                invalid, maxRetries is not a non-negative integer, or the
                options are invalid.
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid chain data: expected an object")

        steps = data.get("steps")
        if not isinstance(steps, list) or not steps:
            raise MalformedDataError("Invalid chain JSON: missing or empty steps array.")

        system_prompt = data.get("systemPrompt")
        if system_prompt is not None and not isinstance(system_prompt, str):
            raise MalformedDataError("Field 'systemPrompt' must be a string or null")

        max_retries = data.get("maxRetries", 3)
        if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 0:
            raise MalformedDataError("Field 'maxRetries' must be a non-negative integer")

        chain = cls(sender)
        chain.with_system_prompt(system_prompt)
        chain.with_max_retries(max_retries)
        if data.get("options") is not None:
            chain.with_options(PromptOptions.from_dict(data["options"]))

        for step_data in steps:
            chain._steps.append(ChainStep.from_dict(step_data))

        return chain

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str, sender: Optional[LLMSender] = None) -> "PromptChain":
        return cls.from_dict(load_json_object(text, "chain"), sender)

    def save(self, path: PathLike, indent: Optional[int] = 2) -> None:
        """Save the chain definition (not run results) to a JSON file."""
        write_text_file(path, self.to_json(indent=indent))

    @classmethod
    def load(cls, path: PathLike, sender: Optional[LLMSender] = None) -> "PromptChain":
        """Load a chain definition from a JSON file."""
        return cls.from_json(read_text_file(path), sender)

    def __len__(self) -> int:
        return len(self._steps)

    def __repr__(self) -> str:
        return f"PromptChain(steps={[s.name for s in self._steps]!r})"
