"""
Catalog descriptors - per-catalog header signatures and row mappers.

CATMAT (materials) and CATSER (services) share one import pipeline; what
differs between them lives here: how the header row is recognised, which
column holds which field, and which table/natural key the row upserts into.
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence, Tuple, Type

from backend.models.schema import CatmatItem, CatserItem
from services.errors import RowValueError

INT16_RANGE = (-(2 ** 15), 2 ** 15 - 1)
INT32_RANGE = (-(2 ** 31), 2 ** 31 - 1)

MISSING_FIELDS_MESSAGE = "campos obrigatórios ausentes na linha"

_INTEGER_RE = re.compile(r'^[+-]?[0-9]+$')
_DECIMAL_RE = re.compile(r'^[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?$')

CATMAT_HEADER = (
    "código do grupo",
    "nome do grupo",
    "código da classe",
    "nome da classe",
    "código do pdm",
    "nome do pdm",
    "código do item",
    "descrição do item",
    "código ncm",
)

# (column index, caption fragment) - the CATSER export decorates its captions
CATSER_HEADER = (
    (0, "tipo material"),
    (1, "grupo serviço"),
    (3, "classe material"),
    (5, "codigo material"),
    (7, "sit atual"),
)
CATSER_MIN_COLUMNS = 8


def normalize_header(value: str) -> str:
    return value.strip().lower()


def is_row_empty(cells: Sequence[str]) -> bool:
    """True when every cell is blank after trimming."""
    return all(not cell.strip() for cell in cells)


def get_cell(cells: Sequence[str], index: int) -> str:
    """Cell at ``index`` or '' for short rows."""
    if index < len(cells):
        return cells[index]
    return ''


def parse_code(value: str, field_name: str, bounds: Tuple[int, int]) -> int:
    """
    Parse a numeric catalog code.

    Exports are messy: codes may come quoted ('123), padded with
    non-breaking spaces, or as floats (123.0). Decimal values are
    truncated toward zero, then range-checked.

    Args:
        value: Raw cell text
        field_name: Field caption used in error messages
        bounds: Inclusive (min, max) of the target integer width

    Returns:
        Parsed integer

    Raises:
        RowValueError: If the cell is empty, not numeric or out of range
    """
    clean = value.strip()
    if clean.startswith("'"):
        clean = clean[1:]
    clean = clean.replace(' ', '').replace('\u00a0', '')

    if clean in ('', '-'):
        raise RowValueError(f"{field_name} vazio")

    if '.' in clean and _DECIMAL_RE.match(clean):
        try:
            parsed = int(float(clean))
        except (ValueError, OverflowError) as e:
            raise RowValueError(f"{field_name} inválido: {e}") from e
    elif _INTEGER_RE.match(clean):
        parsed = int(clean)
    else:
        raise RowValueError(f'{field_name} inválido: "{clean}" não é um número')

    low, high = bounds
    if not low <= parsed <= high:
        raise RowValueError(f"{field_name} inválido: {parsed} fora do intervalo permitido")

    return parsed


def parse_optional_code(value: str) -> Optional[str]:
    """Optional text code: blank or '-' means absent."""
    clean = value.strip()
    if clean in ('', '-'):
        return None
    return clean


def _required_text(cells: Sequence[str], indexes: Dict[str, int]) -> Dict[str, str]:
    values = {name: get_cell(cells, idx).strip() for name, idx in indexes.items()}
    if any(not text for text in values.values()):
        raise RowValueError(MISSING_FIELDS_MESSAGE)
    return values


# CATMAT ---------------------------------------------------------------------

def is_catmat_header(cells: Sequence[str]) -> bool:
    if len(cells) < len(CATMAT_HEADER):
        return False
    return all(
        normalize_header(cells[i]) == expected
        for i, expected in enumerate(CATMAT_HEADER)
    )


def build_catmat_params(cells: Sequence[str]) -> Dict[str, Any]:
    """Map a CATMAT data row to catmat_item column values."""
    params = {
        'group_code': parse_code(get_cell(cells, 0), "código do grupo", INT16_RANGE),
        'class_code': parse_code(get_cell(cells, 2), "código da classe", INT32_RANGE),
        'pdm_code': parse_code(get_cell(cells, 4), "código do pdm", INT32_RANGE),
        'item_code': parse_code(get_cell(cells, 6), "código do item", INT32_RANGE),
    }
    params.update(_required_text(cells, {
        'group_name': 1,
        'class_name': 3,
        'pdm_name': 5,
        'item_description': 7,
    }))
    params['ncm_code'] = parse_optional_code(get_cell(cells, 8))
    return params


# CATSER ---------------------------------------------------------------------

def is_catser_header(cells: Sequence[str]) -> bool:
    if len(cells) < CATSER_MIN_COLUMNS:
        return False
    return all(
        fragment in normalize_header(cells[i])
        for i, fragment in CATSER_HEADER
    )


def build_catser_params(cells: Sequence[str]) -> Dict[str, Any]:
    """Map a CATSER data row to catser_item column values."""
    params = {
        'group_code': parse_code(get_cell(cells, 1), "grupo serviço", INT16_RANGE),
        'class_code': parse_code(get_cell(cells, 3), "classe material", INT32_RANGE),
        'service_code': parse_code(get_cell(cells, 5), "código material serviço", INT32_RANGE),
    }
    params.update(_required_text(cells, {
        'material_service_type': 0,
        'group_name': 2,
        'class_name': 4,
        'service_description': 6,
        'status': 7,
    }))
    return params


@dataclass(frozen=True)
class CatalogDescriptor:
    """
    Everything the generic import pipeline needs to know about one catalog.

    Attributes:
        name: Catalog slug used in URLs, cache keys and logs ('catmat')
        label: Display name used in user-facing messages ('CATMAT')
        is_header: Recognises the catalog's header row
        build_params: Maps a data row to column values (raises RowValueError)
        model: ORM model the rows are upserted into
        key_columns: Natural business key of the model
    """

    name: str
    label: str
    is_header: Callable[[Sequence[str]], bool]
    build_params: Callable[[Sequence[str]], Dict[str, Any]]
    model: Type
    key_columns: Tuple[str, ...]

    @property
    def header_not_found_message(self) -> str:
        return f"cabeçalho {self.label} não encontrado"


CATMAT = CatalogDescriptor(
    name='catmat',
    label='CATMAT',
    is_header=is_catmat_header,
    build_params=build_catmat_params,
    model=CatmatItem,
    key_columns=('group_code', 'class_code', 'pdm_code', 'item_code'),
)

CATSER = CatalogDescriptor(
    name='catser',
    label='CATSER',
    is_header=is_catser_header,
    build_params=build_catser_params,
    model=CatserItem,
    key_columns=('group_code', 'class_code', 'service_code'),
)

CATALOGS: Dict[str, CatalogDescriptor] = {
    CATMAT.name: CATMAT,
    CATSER.name: CATSER,
}


def get_descriptor(name: str) -> CatalogDescriptor:
    """Look up a catalog by slug (case-insensitive)."""
    try:
        return CATALOGS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown catalog: {name}. Expected one of: {', '.join(CATALOGS)}")
