from datetime import date

import pytest

from linktable.config import LinkTableConfig
from linktable.models import ConsolidatedInterval, ResolvedInterval

TODAY = date(2024, 12, 31)
GLOBAL_MIN = date(1925, 1, 1)


def d(s: str) -> date:
    return date.fromisoformat(s)


def consolidated(a_id, b_id, start, end, link_type="LC", link_prim="P") -> ConsolidatedInterval:
    return ConsolidatedInterval(
        a_id=a_id, b_id=b_id, link_start=d(start), link_end=d(end),
        link_type=link_type, link_prim=link_prim,
    )


def resolved(a_id, b_id, start, end) -> ResolvedInterval:
    return ResolvedInterval(
        a_id=a_id, b_id=b_id, link_start=d(start), link_end=d(end), link_type="LC", link_prim="P",
    )


def raw_row(gvkey, permno, start, end, linktype="LC", linkprim="P", liid="01"):
    return {
        "gvkey": gvkey,
        "lpermno": permno,
        "liid": liid,
        "linktype": linktype,
        "linkprim": linkprim,
        "linkdt": start,
        "linkenddt": end,
    }


@pytest.fixture
def config() -> LinkTableConfig:
    return LinkTableConfig(today=TODAY, global_min_date=GLOBAL_MIN)
