import importlib

import pytest


utils = importlib.import_module('core.utils')


@pytest.mark.parametrize(
    'text,expected',
    [
        ('10 MB', 10_000_000),
        ('10MB', 10_000_000),
        ('1.5 GiB', int(1.5 * 1024 ** 3)),
        ('512kib', 512 * 1024),
        ('700', 700),
        (2048, 2048),
        ('0 B', 0),
    ],
)
def test_parse_byte_size(text, expected):
    assert utils.parse_byte_size(text) == expected


@pytest.mark.parametrize('text', ['ten MB', '10 XB', '', True])
def test_parse_byte_size_rejects_garbage(text):
    with pytest.raises(ValueError):
        utils.parse_byte_size(text)


def test_optional_byte_size_treats_blank_as_unset():
    assert utils.optional_byte_size(None) is None
    assert utils.optional_byte_size('  ') is None
    assert utils.optional_byte_size('1 KB') == 1000


def test_format_bytes():
    assert utils.format_bytes(None) == 'n/a'
    assert utils.format_bytes(999) == '999 B'
    assert utils.format_bytes(1_500_000) == '1.5 MB'


def test_tracker_hosts_are_lowercased_and_deduplicated():
    urls = [
        'udp://Tracker.Example.org:1337/announce',
        'https://tracker.example.org/announce?passkey=x',
        None,
        'not a url',
        'http://other.net/a',
    ]
    assert utils.tracker_hosts(urls) == ['tracker.example.org', 'other.net']
