"""Build artifact tracking.

After a successful apply, built images are registered so that pods running
them can be selected later (log tailing, port forwarding).
"""

import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """A built image.

    Attributes:
        image_name: Image reference without tag (e.g., gcr.io/proj/app)
        tag: Fully qualified reference that was deployed (e.g., gcr.io/proj/app:v1)
    """
    image_name: str
    tag: str

    @classmethod
    def parse(cls, value: str) -> 'Artifact':
        """Parse IMAGE=TAG, or a bare tagged reference.

        A bare reference such as ``app:v1`` yields image_name ``app``.
        """
        if '=' in value:
            image_name, tag = value.split('=', 1)
            if not image_name or not tag:
                raise ValueError(f"Invalid artifact '{value}', expected IMAGE=TAG")
            return cls(image_name=image_name, tag=tag)
        # Strip digest or tag, leaving registry ports intact
        image_name = value.split('@', 1)[0]
        last = image_name.rsplit('/', 1)[-1]
        if ':' in last:
            image_name = image_name[:len(image_name) - len(last)] + last.split(':', 1)[0]
        if not image_name:
            raise ValueError(f"Invalid artifact '{value}'")
        return cls(image_name=image_name, tag=value)


@runtime_checkable
class ArtifactTracker(Protocol):
    """Registers deployed artifacts."""

    def register(self, artifacts: list[Artifact]) -> None:
        """Track the given artifacts."""


@dataclass
class ImageList:
    """Set of image references used to select deployed pods.

    Both the deployed tags and the original image names are tracked, since
    a rendered manifest may still reference the untagged name.
    """
    _images: set[str] = field(default_factory=set)

    def add(self, image: str) -> None:
        self._images.add(image)

    def __contains__(self, image: str) -> bool:
        return image in self._images

    def __len__(self) -> int:
        return len(self._images)

    def images(self) -> list[str]:
        return sorted(self._images)

    def register(self, artifacts: list[Artifact]) -> None:
        for artifact in artifacts:
            self.add(artifact.tag)
            self.add(artifact.image_name)
            logger.debug(f"Tracking artifact {artifact.image_name} -> {artifact.tag}")
