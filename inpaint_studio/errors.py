"""Exception types raised across the workflow."""


class InpaintStudioError(Exception):
    """Base class for all workflow errors."""


class ImageDecodeError(InpaintStudioError):
    """Input is not an acceptable, decodable image."""


class PreconditionError(InpaintStudioError):
    """An operation needing an image and a mask ran without them."""


class InvalidTransitionError(InpaintStudioError):
    """Transition is not legal from the current stage."""


class SubmissionError(InpaintStudioError):
    """Remote inpainting request failed or timed out."""


class HistoryEntryNotFound(InpaintStudioError, KeyError):
    """No history entry with the requested id."""
