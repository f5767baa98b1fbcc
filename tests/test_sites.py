"""
Tests for site records: normalization, strict decoding, legacy recovery.
"""

import unittest

import pytest

from devsrv_cli.sites import (
    DEFAULT_PORT,
    ProxyState,
    Site,
    SiteMode,
    decode_strict,
    normalize,
    recover_all,
    recover_record,
)


def _record(**overrides):
    record = {
        "id": "A1",
        "name": "Blog",
        "shortcutLabel": "Blog",
        "folder": "/srv/blog",
        "mode": "localhost",
        "domain": "",
        "port": 4000,
        "served": False,
        "shortcut": True,
    }
    record.update(overrides)
    return record


class TestNormalize(unittest.TestCase):
    """Normalization rules applied on every upsert and load."""

    def test_trims_text_fields(self):
        site = normalize(Site(id="1", name="  Blog ", shortcut_label=" B ", folder=" /srv/blog ", domain=" "))
        self.assertEqual(site.name, "Blog")
        self.assertEqual(site.shortcut_label, "B")
        self.assertEqual(site.folder, "/srv/blog")
        self.assertEqual(site.domain, "")

    def test_label_falls_back_to_name(self):
        site = normalize(Site(id="1", name="Blog", shortcut_label="   ", folder="/x"))
        self.assertEqual(site.shortcut_label, "Blog")

    def test_name_falls_back_to_label(self):
        site = normalize(Site(id="1", name="", shortcut_label="Docs", folder="/x"))
        self.assertEqual(site.name, "Docs")

    def test_both_empty_becomes_site(self):
        site = normalize(Site(id="1", name=" ", shortcut_label="", folder="/x"))
        self.assertEqual(site.name, "Site")
        self.assertEqual(site.shortcut_label, "Site")

    def test_custom_domain_clears_port(self):
        site = normalize(Site(id="1", name="a", shortcut_label="", folder="/x", mode=SiteMode.CUSTOM_DOMAIN, domain="a.test", port=8080))
        self.assertIsNone(site.port)

    def test_loopback_missing_port_gets_default(self):
        site = normalize(Site(id="1", name="a", shortcut_label="", folder="/x", port=None))
        self.assertEqual(site.port, DEFAULT_PORT)

    def test_loopback_missing_port_uses_given_default(self):
        site = normalize(Site(id="1", name="a", shortcut_label="", folder="/x", port=None), default_port=5000)
        self.assertEqual(site.port, 5000)


class TestSiteAddressing(unittest.TestCase):
    def test_loopback_url(self):
        site = Site.create(name="Blog", folder="/srv/blog", port=4000)
        self.assertEqual(site.host(), "localhost:4000")
        self.assertEqual(site.url(), "https://localhost:4000")
        self.assertFalse(site.requires_privileges)

    def test_domain_url(self):
        site = Site.create(name="Blog", folder="/srv/blog", mode=SiteMode.CUSTOM_DOMAIN, domain="blog.test")
        self.assertEqual(site.url(), "https://blog.test")
        self.assertTrue(site.requires_privileges)

    def test_create_assigns_uppercase_uuid(self):
        first = Site.create(name="a", folder="/x")
        second = Site.create(name="a", folder="/x")
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.id, first.id.upper())
        self.assertEqual(len(first.id), 36)

    def test_to_dict_uses_file_keys(self):
        data = Site.create(name="a", folder="/x", shortcut_label="A").to_dict()
        self.assertEqual(
            set(data),
            {"id", "name", "shortcutLabel", "folder", "mode", "domain", "port", "served", "shortcut"},
        )
        self.assertEqual(data["mode"], "localhost")
        self.assertEqual(data["shortcutLabel"], "A")


def test_decode_strict_accepts_current_schema():
    sites = decode_strict([_record(), _record(id="B2", mode="domain", domain="b.test", port=None)])
    assert [s.id for s in sites] == ["A1", "B2"]
    assert sites[1].mode == SiteMode.CUSTOM_DOMAIN
    assert sites[0].port == 4000


@pytest.mark.parametrize(
    "payload",
    [
        {"sites": []},
        [_record(mode="weird")],
        [_record(served="yes")],
        [_record(port="3000")],
        [_record(port=True)],
        [{k: v for k, v in _record().items() if k != "shortcutLabel"}],
        ["not an object"],
    ],
)
def test_decode_strict_rejects(payload):
    with pytest.raises(ValueError):
        decode_strict(payload)


def test_recover_legacy_record_defaults():
    """A record missing mode/port/domain decodes to loopback on the default port."""
    site = recover_record({"id": "X", "name": "Old", "folder": "/srv/old"})
    assert site.mode == SiteMode.LOOPBACK_PORT
    assert site.port == DEFAULT_PORT
    assert site.domain == ""
    assert site.served is False
    assert site.shortcut is False
    assert site.shortcut_label == "Old"


def test_recover_renamed_fields():
    site = recover_record({"name": "Old", "label": "Legacy", "root": "/srv/old", "enabled": True, "withoutPort": True})
    assert site.served is True
    assert site.shortcut_label == "Legacy"
    assert site.folder == "/srv/old"
    # withoutPort never selects the mode
    assert site.mode == SiteMode.LOOPBACK_PORT
    assert site.id


def test_recover_mistyped_fields_fall_back():
    site = recover_record({"id": 7, "name": "N", "folder": "/x", "port": "8081", "served": "true", "mode": "Custom-Domain", "domain": "n.test"})
    assert site.id and site.id != "7"
    assert site.mode == SiteMode.CUSTOM_DOMAIN
    assert site.port is None
    assert site.served is False


def test_recover_string_port():
    site = recover_record({"name": "N", "folder": "/x", "port": " 8081 "})
    assert site.port == 8081


def test_recover_all_rejects_non_lists():
    with pytest.raises(ValueError):
        recover_all({"name": "x"})
    with pytest.raises(ValueError):
        recover_all([{"name": "x"}, 3])


def test_proxy_state_values():
    assert {s.value for s in ProxyState} == {"Running", "Stopped", "Unknown", "Error"}
