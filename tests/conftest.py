import pytest

from stdf_integrity.config import Config, DecoderConfig, StorageConfig

from builders import simple_file


@pytest.fixture
def decoder_config():
    return DecoderConfig(byte_order="big")


@pytest.fixture
def config(tmp_path):
    return Config(
        storage=StorageConfig(
            data_dir=tmp_path / "data",
            session_file=tmp_path / "data" / ".sessions.json",
        )
    )


@pytest.fixture
def stdf_file(tmp_path):
    path = tmp_path / "LOT001-W01_P100AB.stdf"
    path.write_bytes(simple_file([1, 1, 1, 2]))
    return path


EDS_MAP = """\
Device          : DEV100
Lot NO          : LOT001
Slot No         : {slot}
Wafer ID        : {wafer_id}
Wafer Size      : 8 inch
Flat Dir        : Down
Total test die  : {total}
Pass Die        : {passed}
Fail Die        : {failed}
Yield           : {yield_pct}%

11111
11111
11111
1111X
XXXX.
"""


def eds_map(slot=1, wafer_id="LOT001-01", total=24, passed=19, failed=5, yield_pct="79.17"):
    return EDS_MAP.format(
        slot=slot, wafer_id=wafer_id, total=total, passed=passed, failed=failed, yield_pct=yield_pct
    )


@pytest.fixture
def make_eds_map():
    return eds_map
