class ConsultiaError(Exception):
    """Base class for errors raised by the consultation engine."""


class ConfigurationError(ConsultiaError):
    """A collaborator client is missing required credentials."""


class EngineError(ConsultiaError):
    """The reasoning engine failed, timed out, or returned unusable output."""


class ConsultationTooShortError(ConsultiaError):
    """Not enough transcript to produce the requested artifact."""

    def __init__(self, entries: int, required: int):
        self.entries = entries
        self.required = required
        super().__init__(
            f"Consulta muy corta para generar informe completo "
            f"({entries} intervenciones, se requieren {required})"
        )
