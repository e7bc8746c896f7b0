class BocadiError(Exception):
    """Base class for errors raised by the Bocadi backend."""


class StoreNotConfigured(BocadiError):
    pass


class EstimatorNotConfigured(BocadiError):
    pass


class NotFound(BocadiError):
    pass


class ValidationError(BocadiError):
    pass


class ProteinTypeInUse(BocadiError):
    """Raised when deleting a protein type that dishes still reference."""

    def __init__(self, name, count):
        self.name = name
        self.count = count
        super().__init__(
            f'No se puede eliminar "{name}" porque tiene {count} plato(s) asociado(s).'
        )
