import math
import struct

import pytest

from stdf_integrity.exceptions import InterpretError
from stdf_integrity.interpreters import (
    BinDefinition,
    FieldReader,
    MasterInfo,
    ParametricResult,
    PartResult,
    decode_fields,
    interpret,
)
from stdf_integrity.records import RECORD_LAYOUTS, RawRecord, RecordKind

from builders import eps, far, hbr, mir, pir, prr, ptr, record, sbr, tsr, wcr, wir


def raw(data: bytes, offset: int = 0) -> RawRecord:
    length = struct.unpack(">H", data[:2])[0]
    return RawRecord(data[2], data[3], length, data[4:4 + length], offset)


def raw_le(data: bytes) -> RawRecord:
    length = struct.unpack("<H", data[:2])[0]
    return RawRecord(data[2], data[3], length, data[4:4 + length], 0)


class TestRecordKinds:
    def test_codes_come_from_pystdf(self):
        assert RecordKind.from_codes(1, 10) == RecordKind.MIR
        assert RecordKind.from_codes(5, 20) == RecordKind.PRR
        assert RecordKind.from_codes(15, 10) == RecordKind.PTR
        assert RecordKind.from_codes(99, 99) is None
        assert RecordKind.PRR.codes == (5, 20)

    def test_layout_for_every_kind(self):
        for kind in RecordKind:
            assert kind.value in RECORD_LAYOUTS
        assert RECORD_LAYOUTS["PIR"] == (("HEAD_NUM", "U1"), ("SITE_NUM", "U1"))
        assert RECORD_LAYOUTS["PRR"][4] == ("HARD_BIN", "U2")

    def test_other_name(self):
        assert RawRecord(7, 7, 0, b"", 0).name == "OTHER(7,7)"


class TestFieldReader:
    def test_reads_numbers_and_strings(self):
        payload = struct.pack(">HI", 7, 123456) + b"\x03abc" + b"Z"
        reader = FieldReader(RawRecord(0, 0, len(payload), payload, 0))
        assert reader.read("A", "U2") == 7
        assert reader.read("B", "U4") == 123456
        assert reader.read("C", "Cn") == "abc"
        assert reader.read("D", "C1") == "Z"
        assert reader.remaining == 0

    def test_little_endian(self):
        payload = struct.pack("<hf", -5, 2.5)
        reader = FieldReader(RawRecord(0, 0, len(payload), payload, 0), "little")
        assert reader.read("A", "I2") == -5
        assert reader.read("B", "R4") == 2.5

    def test_out_of_bounds_read_raises(self):
        reader = FieldReader(RawRecord(0, 0, 1, b"\x01", 42))
        with pytest.raises(InterpretError) as exc:
            reader.read("A", "U4")
        assert exc.value.offset == 42

    def test_string_length_past_end_raises(self):
        payload = b"\x09abc"
        reader = FieldReader(RawRecord(0, 0, len(payload), payload, 0))
        with pytest.raises(InterpretError):
            reader.read("A", "Cn")

    def test_bit_fields(self):
        payload = b"\x02\xaa\xbb" + struct.pack(">H", 9) + b"\x01\x02"
        reader = FieldReader(RawRecord(0, 0, len(payload), payload, 0))
        assert reader.read("A", "Bn") == b"\xaa\xbb"
        assert reader.read("B", "Dn") == b"\x01\x02"


class TestDecodeFields:
    def test_omitted_trailing_fields_are_none(self):
        values = decode_fields(raw(prr(1)))
        assert values["HARD_BIN"] == 1
        assert values["PART_ID"] == ""
        assert values["PART_TXT"] is None
        assert values["PART_FIX"] is None

    def test_payload_ending_inside_field_raises(self):
        full = raw(prr(1))
        cut = RawRecord(full.rec_typ, full.rec_sub, 6, full.payload[:6], 0)
        with pytest.raises(InterpretError):
            decode_fields(cut)


class TestInterpreters:
    def test_far(self):
        payload = interpret(raw(far()))
        assert payload.stdf_version == 4

    def test_mir(self):
        payload = interpret(raw(mir(lot_id="L77", part_type="X9", job_name="JOB", operator="ME", temperature="85C")))
        assert isinstance(payload, MasterInfo)
        assert payload.lot_id == "L77"
        assert payload.part_type == "X9"
        assert payload.job_name == "JOB"
        assert payload.operator == "ME"
        assert payload.tester_type == "TESTER9"
        assert payload.test_code == "CP1"
        assert payload.test_temperature == "85C"
        assert payload.start_time == 1700000000

    def test_mir_little_endian(self):
        payload = interpret(raw_le(mir(order="<")), "little")
        assert payload.start_time == 1700000000
        assert payload.lot_id == "LOT001"

    def test_wir(self):
        payload = interpret(raw(wir("WAF-7")))
        assert payload.wafer_id == "WAF-7"
        assert payload.head_num == 1

    def test_wir_missing_wafer_id(self):
        full = raw(wir("W"))
        short = RawRecord(full.rec_typ, full.rec_sub, 6, full.payload[:6], 0)
        with pytest.raises(InterpretError):
            interpret(short)

    def test_wcr(self):
        payload = interpret(raw(wcr(units=3, flat=b"L", center_x=-32768)))
        assert payload.units == 3
        assert payload.flat == "L"
        assert payload.center_x is None
        assert payload.center_y == 12
        assert payload.wafer_size == 8.0

    def test_pir(self):
        payload = interpret(raw(pir(head=2, site=3)))
        assert (payload.head_num, payload.site_num) == (2, 3)

    def test_prr(self):
        payload = interpret(raw(prr(5, soft_bin=50, x=-3, y=-32768, part_id="17", test_time=250)))
        assert isinstance(payload, PartResult)
        assert payload.hard_bin == 5
        assert payload.soft_bin == 50
        assert payload.x_coord == -3
        assert payload.y_coord is None
        assert payload.part_id == "17"
        assert payload.test_time == 250

    def test_ptr_with_limits(self):
        payload = interpret(raw(ptr(100, 1.25, "VDD", lo_limit=1.0, hi_limit=2.0, units="V")))
        assert isinstance(payload, ParametricResult)
        assert payload.test_num == 100
        assert payload.result == 1.25
        assert payload.test_text == "VDD"
        assert payload.units == "V"
        assert payload.has_lo_limit and payload.has_hi_limit
        assert payload.flag_valid and not payload.flagged_failed

    def test_ptr_flags(self):
        failed = interpret(raw(ptr(1, 0.0, test_flag=0x80)))
        assert failed.flagged_failed
        invalid = interpret(raw(ptr(1, 0.0, test_flag=0x02)))
        assert not invalid.result_valid
        unknown = interpret(raw(ptr(1, 0.0, test_flag=0x40, hi_limit=1.0)))
        assert not unknown.flag_valid
        assert not unknown.has_lo_limit
        assert unknown.has_hi_limit

    def test_ptr_nan_result_is_invalid(self):
        payload = interpret(raw(ptr(1, math.nan)))
        assert not payload.result_valid

    def test_tsr(self):
        payload = interpret(raw(tsr(42, "IDDQ")))
        assert payload.test_num == 42
        assert payload.test_name == "IDDQ"
        assert payload.exec_count == 1

    def test_hbr_and_sbr(self):
        hard = interpret(raw(hbr(3, 12, "OPEN", b"F")))
        soft = interpret(raw(sbr(30, 4, "OPEN_PIN", b"F")))
        assert isinstance(hard, BinDefinition)
        assert hard.hardware and hard.bin_num == 3 and hard.name == "OPEN" and hard.pass_fail == "F"
        assert not soft.hardware and soft.bin_num == 30 and soft.count == 4

    def test_uninterpreted_kinds_return_none(self):
        assert interpret(raw(eps())) is None
        assert interpret(raw(record(99, 1, b"x"))) is None
