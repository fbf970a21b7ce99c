import pytest

from hub_gpio_ctrl.server.decoder import decode_command
from hub_gpio_ctrl.server.errors import DecodeError
from hub_gpio_ctrl.server.models import Command, CommandKind, PinLevel, PinMode

"""
Command Decoder Tests.
Turning raw MQTT payloads into typed, immutable Command values.
"""


def test_decodes_set_mode_output():
    command = decode_command(b'{"Type":"GPIOSetMode","GPIO":17,"Mode":"Output"}')

    assert command == Command(kind=CommandKind.SET_MODE, pin=17, mode=PinMode.OUTPUT, type_name="GPIOSetMode")


def test_decodes_set_level_low():
    command = decode_command(b'{"Type":"GPIOLevel","GPIO":17,"Level":"Low"}')

    assert command.kind is CommandKind.SET_LEVEL
    assert command.pin == 17
    assert command.level is PinLevel.LOW
    assert command.mode is PinMode.UNSPECIFIED


@pytest.mark.parametrize("payload", [
    '{"Type":"GPIOSetMode","GPIO":4,"Mode":"Input"}',
    bytearray(b'{"Type":"GPIOSetMode","GPIO":4,"Mode":"Input"}'),
])
def test_accepts_str_and_bytearray(payload):
    assert decode_command(payload).mode is PinMode.INPUT


def test_unrecognized_type_is_unknown_not_an_error():
    command = decode_command(b'{"Type":"Reboot","GPIO":3}')

    assert command.kind is CommandKind.UNKNOWN
    assert command.type_name == "Reboot"


def test_unrecognized_mode_and_level_are_unspecified():
    command = decode_command(b'{"Type":"GPIOSetMode","GPIO":5,"Mode":"output","Level":"HIGH"}')

    assert command.mode is PinMode.UNSPECIFIED
    assert command.level is PinLevel.UNSPECIFIED


def test_missing_and_null_fields_take_zero_values():
    command = decode_command(b'{"Mode": null}')

    assert command == Command(kind=CommandKind.UNKNOWN, pin=0, type_name="")


def test_extra_fields_are_ignored():
    command = decode_command(b'{"Type":"GPIOLevel","GPIO":2,"Level":"High","Sender":"hub-1","Seq":9}')

    assert command.level is PinLevel.HIGH


def test_field_names_fall_back_to_case_insensitive_match():
    command = decode_command(b'{"type":"GPIOLevel","gpio":22,"level":"High"}')

    assert command.kind is CommandKind.SET_LEVEL
    assert command.pin == 22
    assert command.level is PinLevel.HIGH


def test_exact_field_name_wins_over_case_insensitive_one():
    command = decode_command(b'{"gpio":1,"GPIO":2,"Type":"GPIOLevel"}')

    assert command.pin == 2


@pytest.mark.parametrize("payload", [
    b'{"Type":"GPIOSetMode","GPIO":17,',
    b'not json',
    b'',
    b'\xff\xfe\x00garbage',
    b'[1, 2, 3]',
    b'"GPIOSetMode"',
    b'null',
])
def test_malformed_payload_raises_decode_error(payload):
    with pytest.raises(DecodeError):
        decode_command(payload)


@pytest.mark.parametrize("payload", [
    b'{"Type":"GPIOLevel","GPIO":"17"}',
    b'{"Type":"GPIOLevel","GPIO":17.5}',
    b'{"Type":"GPIOLevel","GPIO":true}',
    b'{"Type":42,"GPIO":17}',
    b'{"Type":"GPIOSetMode","GPIO":17,"Mode":["Output"]}',
])
def test_wrongly_typed_fields_raise_decode_error(payload):
    with pytest.raises(DecodeError):
        decode_command(payload)


def test_non_text_payload_raises_decode_error():
    with pytest.raises(DecodeError):
        decode_command(None)


def test_decoding_is_pure_and_repeatable():
    payload = b'{"Type":"GPIOSetMode","GPIO":17,"Mode":"Output"}'

    first = decode_command(payload)
    second = decode_command(payload)

    assert first == second
    with pytest.raises(AttributeError):
        first.pin = 18 # frozen dataclass
