"""
Tests for core/profiles.py - profile lookup.
"""

import shutil
import tempfile
import unittest
from pathlib import Path

from vpnctl.core.profiles import Profile, ProfileError, ProfileNotFoundError, ProfileStore

PROFILES = """
[work]
server = https://vpn.example.com
username = alice
password = p%ss
servercert = pin-sha256:abc=

[lab]
server = lab.example.net:8443
protocol = gp

[broken]
username = bob
"""


class TestProfileStore(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.path = Path(self.temp_dir) / "profiles.cfg"
        self.path.write_text(PROFILES)
        self.store = ProfileStore(self.path)

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_resolve(self):
        profile = self.store.resolve("work")
        self.assertEqual(profile.server, "https://vpn.example.com")
        self.assertEqual(profile.username, "alice")
        self.assertEqual(profile.password, "p%ss")
        self.assertEqual(profile.protocol, "anyconnect")
        self.assertEqual(profile.servercert, "pin-sha256:abc=")

    def test_protocol_override(self):
        self.assertEqual(self.store.resolve("lab").protocol, "gp")

    def test_missing_profile(self):
        with self.assertRaises(ProfileNotFoundError) as context:
            self.store.resolve("home")
        self.assertEqual(str(context.exception), "Server home not found")

    def test_profile_without_server(self):
        with self.assertRaises(ProfileError):
            self.store.resolve("broken")

    def test_missing_file_has_no_profiles(self):
        store = ProfileStore(Path(self.temp_dir) / "absent.cfg")
        self.assertEqual(store.names(), [])
        with self.assertRaises(ProfileNotFoundError):
            store.resolve("work")

    def test_names(self):
        self.assertEqual(self.store.names(), ["work", "lab", "broken"])


class TestProfile(unittest.TestCase):

    def test_host(self):
        self.assertEqual(Profile("a", "https://vpn.example.com/group").host, "vpn.example.com")
        self.assertEqual(Profile("b", "lab.example.net:8443").host, "lab.example.net")
        self.assertEqual(Profile("c", "198.51.100.1").host, "198.51.100.1")

    def test_password_not_in_repr(self):
        self.assertNotIn("hunter2", repr(Profile("a", "vpn", password="hunter2")))


if __name__ == "__main__":
    unittest.main()
