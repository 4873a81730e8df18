"""
Error types raised by the render engine and its collaborators
"""


class CodestreamError(Exception):
    """Base class for all render run failures"""


class LoadError(CodestreamError):
    """A source track or overlay asset could not be decoded or loaded (fatal, not retried)"""


class CodecNegotiationExhausted(CodestreamError):
    """No preferred codec is supported; the capture session falls back to a generic container"""


class EncoderError(CodestreamError):
    """The encoder failed mid-recording; buffered chunks are discarded"""


class AssemblyError(CodestreamError):
    """Buffered chunks could not be assembled into an output artifact"""


class RunCancelled(CodestreamError):
    """The run was cancelled through its cancel token"""


class CollaboratorError(CodestreamError):
    """A narration, script or image service call failed"""
