from __future__ import annotations

import pytest

from fakes import FakeUpstream, acs_row, acs_table, collection, open_data_feature
from tractmap.app.config import Settings


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        COUNTY_CODES=["061", "047"],
        LOCAL_BOUNDARY_PATH=None,
        HTTP_RETRIES=0,
        CENSUS_API_KEY=None,
    )


@pytest.fixture()
def upstream() -> FakeUpstream:
    """Three Manhattan/Brooklyn tracts with matching ACS rows.

    36061000100 has complete data, 36061000200 has zero housing units and
    36047000300 carries a suppressed car-free count.
    """
    fake = FakeUpstream()
    fake.responses["boundaries:nyc-open-data"] = collection(
        open_data_feature("36061000100", -73.99, 40.75),
        open_data_feature("36061000200", -73.98, 40.76),
        open_data_feature("36047000300", -73.95, 40.65),
    )
    fake.responses["acs:061"] = acs_table(
        acs_row("061", "000100"),
        acs_row("061", "000200", housing="0"),
    )
    fake.responses["acs:047"] = acs_table(acs_row("047", "000300", no_car="-666666666"))
    return fake
