"""
Exceptions for Cellarman.

All errors are CellarError with a structured code for programmatic handling.
Each error kind also has its own subclass so callers can catch precisely.
"""

from decimal import Decimal
from typing import Any


class BaseError(Exception):
    """
    Exception with a machine-readable code and a data payload.

    Subclasses provide `_default_messages` (code -> message) and may set
    `default_code` so they can be raised without repeating the code.
    """

    _default_messages: dict[str, str] = {}
    default_code: str = ''

    def __init__(self, code: str | None = None, message: str | None = None, **data):
        self.code = code or self.default_code
        self.message = message or self._default_messages.get(self.code, self.code)
        self.data = data
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.data:
            return f"[{self.code}] {self.message} {self.data}"
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, data={self.data!r})"


class CellarError(BaseError):
    """
    Structured exception for cellar operations.

    Usage:
        try:
            cellar.start_fermentation(batch, mode='split', window=w, allocations=allocs)
        except CellarError as e:
            if e.code == 'VOLUME_MISMATCH':
                print(f"Faltam {e.remainder} L")

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable message
        data: Additional context data
        retryable: Whether repeating the same request may succeed
    """

    retryable = False

    _default_messages = {
        'VOLUME_MISMATCH': 'Soma das alocações difere do volume total',
        'CAPACITY_EXCEEDED': 'Volume excede a capacidade do tanque',
        'TANK_UNAVAILABLE': 'Tanque indisponível no período',
        'SELECTION_REQUIRED': 'Nenhum tanque ou lote selecionado',
        'BLEND_INCOMPATIBLE': 'Lote incompatível para blend',
        'CONCURRENT_MODIFICATION': 'Modificação concorrente detectada',
        'NOT_FOUND': 'Registro não encontrado',
        'FORBIDDEN': 'Operação não permitida',
        'INVALID_TRANSITION': 'Transição de fase inválida',
        'DUPLICATE_PLAN': 'Já existe um plano para esta fase',
        'DUPLICATE_TANK': 'Tanque repetido na divisão',
        'INVALID_VOLUME': 'Volume inválido (deve ser positivo)',
        'INVALID_WINDOW': 'Período inválido (fim deve ser após o início)',
        'INVALID_CAPABILITY': 'Capacidade de fase desconhecida',
        'INVALID_REQUEST': 'Requisição inválida',
    }

    @property
    def remainder(self) -> Decimal:
        """Shortcut for data['remainder']."""
        return self.data.get('remainder', Decimal('0'))

    @property
    def tank_id(self):
        """Shortcut for data['tank_id']."""
        return self.data.get('tank_id')

    @property
    def reason(self) -> str:
        """Shortcut for data['reason']."""
        return self.data.get('reason', '')

    @property
    def rule(self) -> str:
        """Shortcut for data['rule']."""
        return self.data.get('rule', '')

    def as_dict(self) -> dict[str, Any]:
        """Serialize to dict (useful for APIs)."""
        return {
            'code': self.code,
            'message': self.message,
            'retryable': self.retryable,
            'data': {
                k: str(v) if isinstance(v, Decimal) else v
                for k, v in self.data.items()
            }
        }


class VolumeMismatchError(CellarError):
    """Split allocations do not add up to the batch volume. `remainder` is signed."""
    default_code = 'VOLUME_MISMATCH'


class CapacityExceededError(CellarError):
    default_code = 'CAPACITY_EXCEEDED'


class TankUnavailableError(CellarError):
    """Tank is booked, cleaning, in maintenance or cannot host the phase."""
    default_code = 'TANK_UNAVAILABLE'


class SelectionRequiredError(CellarError):
    default_code = 'SELECTION_REQUIRED'


class BlendIncompatibleError(CellarError):
    """A blending rule failed. `rule` names it."""
    default_code = 'BLEND_INCOMPATIBLE'


class ConcurrentModificationError(CellarError):
    """Another writer got there first. Safe to retry the whole request."""
    default_code = 'CONCURRENT_MODIFICATION'
    retryable = True


class NotFoundError(CellarError):
    default_code = 'NOT_FOUND'


class ForbiddenError(CellarError):
    default_code = 'FORBIDDEN'


class InvalidTransitionError(CellarError):
    default_code = 'INVALID_TRANSITION'


class DuplicatePlanError(CellarError):
    default_code = 'DUPLICATE_PLAN'
