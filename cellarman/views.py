"""
JSON endpoints for the cellar planner.

Every command returns the entities it wrote, so clients do not need to
reload lists after a mutation. Errors answer {"error": CellarError.as_dict()}.
"""

import json
import logging
from functools import wraps

from django.http import JsonResponse
from django.utils import timezone
from django.utils.dateparse import parse_datetime
from django.views.decorators.http import require_GET, require_POST

from cellarman.exceptions import CellarError, ForbiddenError
from cellarman.models.enums import LotPhase
from cellarman.service import Cellar
from cellarman.services.planner import AllocationMode, Window

logger = logging.getLogger('cellarman')

ERROR_STATUS = {
    'NOT_FOUND': 404,
    'FORBIDDEN': 403,
    'CONCURRENT_MODIFICATION': 409,
    'DUPLICATE_PLAN': 409,
    'INVALID_TRANSITION': 409,
}

COMMAND_PERMISSION = 'cellarman.change_lot'


def _json_errors(view):
    """Turn CellarError into a JSON error response."""

    @wraps(view)
    def wrapper(request, *args, **kwargs):
        try:
            if not request.user.is_authenticated:
                raise ForbiddenError(detail='authentication required')
            return view(request, *args, **kwargs)
        except CellarError as e:
            status = ERROR_STATUS.get(e.code, 400)
            if status >= 409:
                logger.info("cellar.api.conflict", extra={"path": request.path, "code": e.code})
            return JsonResponse({'error': e.as_dict()}, status=status)

    return wrapper


def _require_command_permission(request):
    if not request.user.has_perm(COMMAND_PERMISSION):
        raise ForbiddenError(permission=COMMAND_PERMISSION)


def _body(request) -> dict:
    try:
        data = json.loads(request.body or b'{}')
    except ValueError:
        raise CellarError('INVALID_REQUEST', detail='body is not valid JSON') from None
    if not isinstance(data, dict):
        raise CellarError('INVALID_REQUEST', detail='body must be an object')
    return data


def _datetime(value, name):
    parsed = parse_datetime(value) if isinstance(value, str) else None
    if parsed is None:
        raise CellarError('INVALID_REQUEST', field=name)
    if timezone.is_naive(parsed):
        parsed = timezone.make_aware(parsed)
    return parsed


def _window(data, start_key='window_start', end_key='window_end'):
    if start_key not in data and end_key not in data:
        return None
    return Window(_datetime(data.get(start_key), start_key), _datetime(data.get(end_key), end_key))


def _phase(value, name='phase') -> LotPhase:
    try:
        return LotPhase(value)
    except ValueError:
        raise CellarError('INVALID_REQUEST', field=name, value=value) from None


def _mode(value) -> AllocationMode:
    try:
        return AllocationMode(value or AllocationMode.SINGLE)
    except ValueError:
        raise CellarError('INVALID_REQUEST', field='mode', value=value) from None


def _flag(value, default=True) -> bool:
    if value is None:
        return default
    return str(value).lower() in ('1', 'true', 'yes')


def _tank_dict(tank) -> dict:
    return {
        'id': tank.pk,
        'code': tank.code,
        'name': tank.name,
        'type': tank.type,
        'capacity': str(tank.capacity),
        'status': tank.status,
        'capabilities': tank.capabilities,
        'active_assignments': [
            {
                'id': a.pk,
                'lot_id': a.lot_id,
                'lot_code': a.lot.code,
                'status': a.status,
                'planned_start': a.planned_start.isoformat(),
                'planned_end': a.planned_end.isoformat(),
            }
            for a in getattr(tank, 'active_assignments', [])
        ],
    }


@require_GET
@_json_errors
def candidate_tanks(request):
    """GET ?phase=&exclude_needs_cip=&exclude_occupied=&window_start=&window_end="""
    phase = _phase(request.GET.get('phase'))
    tanks = Cellar.list_candidate_tanks(
        phase,
        exclude_needs_cip=_flag(request.GET.get('exclude_needs_cip')),
        exclude_occupied=_flag(request.GET.get('exclude_occupied')),
        window=_window(request.GET),
    )
    return JsonResponse({'tanks': [_tank_dict(t) for t in tanks]})


@require_POST
@_json_errors
def availability(request):
    """POST {tank_ids, window_start, window_end} -> {tank_id: bool}"""
    data = _body(request)
    tank_ids = data.get('tank_ids')
    if not isinstance(tank_ids, list):
        raise CellarError('INVALID_REQUEST', field='tank_ids')
    window = _window(data)
    if window is None:
        raise CellarError('INVALID_REQUEST', field='window_start')
    try:
        ids = [int(t) for t in tank_ids]
    except (TypeError, ValueError):
        raise CellarError('INVALID_REQUEST', field='tank_ids') from None
    result = Cellar.check_availability(ids, window)
    return JsonResponse({str(k): v for k, v in result.items()})


@require_GET
@_json_errors
def active_lots(request):
    """GET ?phase="""
    phase = request.GET.get('phase')
    lots = Cellar.list_active_lots(_phase(phase) if phase else None)
    for lot in lots:
        lot['total_volume'] = str(lot['total_volume'])
    return JsonResponse({'lots': lots})


def _placement(data) -> dict:
    return {
        'mode': _mode(data.get('mode')),
        'window': _window(data, 'planned_start', 'planned_end'),
        'tank': data.get('tank_id'),
        'allocations': data.get('allocations'),
        'target_lot': data.get('target_lot_id'),
        'readings': data.get('readings'),
        'notes': data.get('notes', ''),
        'user': None,
    }


@require_POST
@_json_errors
def plan_batch(request, batch_id):
    """Plan-and-commit fermentation for a batch."""
    _require_command_permission(request)
    params = _placement(_body(request))
    params['user'] = request.user
    result = Cellar.start_fermentation(batch_id, **params)
    return JsonResponse(result.as_dict(), status=201)


@require_POST
@_json_errors
def transition_lot(request, lot_id):
    """Phase transition for a lot (transfer to conditioning, to bright, rack)."""
    _require_command_permission(request)
    data = _body(request)
    params = _placement(data)
    params['user'] = request.user
    result = Cellar.transfer_lot(
        lot_id,
        _phase(data.get('to_phase'), 'to_phase'),
        stay_in_same_tank=bool(data.get('stay_in_same_tank', False)),
        measured_loss=data.get('measured_loss', 0),
        **params,
    )
    return JsonResponse(result.as_dict(), status=201)
