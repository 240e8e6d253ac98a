"""
Job request and result types
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence, Tuple

from .bundle import DeploymentBundle
from .errors import ErrorKind, GfaasError

OUTPUT_NAME = "out"


def input_names(count: int) -> Tuple[str, ...]:
    """Deterministic file names for count input payloads: in0, in1, ..."""
    return tuple(f"in{i}" for i in range(count))


@dataclass(frozen=True)
class JobRequest:
    """One invocation of a bundle, consumed by exactly one executor"""
    bundle: DeploymentBundle
    inputs: Tuple[Tuple[str, bytes], ...]
    output_name: str = OUTPUT_NAME

    @classmethod
    def create(cls, bundle: DeploymentBundle, payloads: Sequence[bytes]) -> "JobRequest":
        """Name the payloads in submission order"""
        names = input_names(len(payloads))
        return cls(bundle=bundle, inputs=tuple(zip(names, (bytes(p) for p in payloads))))

    @property
    def entry_point(self) -> str:
        return self.bundle.entry_point


@dataclass(frozen=True)
class JobResult:
    """Outcome of a single job: a complete output or an error, never both"""
    ok: bool
    output: Any = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""
    error: Optional[GfaasError] = field(default=None, compare=False, repr=False)

    @classmethod
    def success(cls, output: Any) -> "JobResult":
        return cls(ok=True, output=output)

    @classmethod
    def failure(cls, error: GfaasError) -> "JobResult":
        return cls(ok=False, error_kind=error.kind, message=str(error), error=error)

    def unwrap(self) -> Any:
        """Return the output or raise the recorded error"""
        if self.ok:
            return self.output
        if self.error is not None:
            raise self.error
        raise GfaasError(self.message)

    def map(self, fn: Callable[[Any], Any]) -> "JobResult":
        """
        Apply fn to a successful output.

        A GfaasError raised by fn turns the result into a failure.
        Failures pass through unchanged.
        """
        if not self.ok:
            return self
        try:
            return JobResult.success(fn(self.output))
        except GfaasError as e:
            return JobResult.failure(e)
