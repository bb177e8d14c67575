"""Abstract interfaces for the collaborators the batch pipeline talks to."""

from abc import ABC, abstractmethod
from typing import Optional

from genpipe.core.models import GalleryItem


class ModelSelector(ABC):
    """Chooses which model should render a prompt.

    Implementations may do I/O. The orchestrator treats any exception as
    "use the default model" and never fails a unit because of it.
    """

    @abstractmethod
    def choose_model(self, prompt: str) -> str:
        """Pick a model identifier for a prompt.

        Args:
            prompt: The text prompt

        Returns:
            Model identifier understood by the generation endpoint
        """
        pass

    @property
    def name(self) -> str:
        return self.__class__.__name__

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"


class FeedbackRecorder(ABC):
    """Records thumbs-up / thumbs-down votes on delivered images."""

    @abstractmethod
    def record_vote(self, prompt: str, model: str, seed: Optional[int], up: bool) -> bool:
        """Store a vote.

        Args:
            prompt: Prompt of the voted image
            model: Model that produced it
            seed: Seed that produced it
            up: True for a positive vote

        Returns:
            True if the vote was stored, False otherwise
        """
        pass


class GallerySink(ABC):
    """Receives accepted images. Presentation and export live behind this."""

    @abstractmethod
    def add(self, item: GalleryItem) -> None:
        """Deliver one accepted image.

        Args:
            item: The encoded image and its metadata
        """
        pass
