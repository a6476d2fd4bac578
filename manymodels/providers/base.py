"""Abstract bases for model providers and background research backends."""

from abc import ABC, abstractmethod

from manymodels.models import Generation, ImageAttachment, JobSnapshot


class ProviderError(Exception):
    """Raised when a provider call fails."""

    def __init__(self, provider_name: str, message: str) -> None:
        self.provider_name = provider_name
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all synchronous (request/response) model providers."""

    @abstractmethod
    def name(self) -> str:
        """Return the registry name of the model (e.g. 'gpt-5.2')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def generate(self, prompt: str, image: ImageAttachment | None = None) -> Generation:
        """Generate a response for the given prompt.

        Args:
            prompt: The full prompt text to send.
            image: Optional image to attach. Callers only pass one to
                vision-capable models.

        Returns:
            Generation with the response text and token usage.

        Raises:
            ProviderError: On API failure or invalid response.
        """
        ...


class JobBackend(ABC):
    """Submit-then-poll backend for long-running deep research jobs."""

    @abstractmethod
    def name(self) -> str:
        ...

    @abstractmethod
    async def submit(self, prompt: str, context: str | None = None) -> JobSnapshot:
        """Start one background job and return its first observed state.

        Raises:
            ProviderError: If the job could not be created.
        """
        ...

    @abstractmethod
    async def poll(self, job_id: str) -> JobSnapshot:
        """Fetch the current state of a job.

        Raises:
            ProviderError: If the status request fails.
        """
        ...
