"""
Exceptions raised by the label fusion engine.

All configuration problems are detected before the first EM iteration.
"""


class LabelFusionError(Exception):
    """Base class for label fusion failures."""


class ConfigurationError(LabelFusionError, ValueError):
    """Invalid configuration or inconsistent inputs."""


class LabelOutOfRangeError(ConfigurationError):
    """A source contains a label outside the declared label space."""

    def __init__(self, source_index: int, label: int, number_of_classes: int):
        self.source_index = source_index
        self.label = label
        self.number_of_classes = number_of_classes
        super().__init__(
            f"Source {source_index} contains label {label} outside "
            f"the label space [0, {number_of_classes - 1}]"
        )


class ImageShapeMismatchError(ConfigurationError):
    """Input images do not share the same spatial extent."""


class EmptyMaskError(ConfigurationError):
    """The mask excludes every pixel, so nothing can be estimated."""
