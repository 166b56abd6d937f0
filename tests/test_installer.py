"""
Installer tests: distribution detection and package installation.

Author: antiscan Project
License: GNU GPL v3
"""

import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from fakes import FakeFirewall, make_config

from antiscan.exceptions import InstallError
from antiscan.managers.installer import DEBIAN, REDHAT, UNKNOWN_DISTRO, Installer


class TestInstaller(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.base = Path(self.tmpdir.name)
        self.config = make_config(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def make_installer(self, fw, marker=None):
        installer = Installer(fw, self.config)
        installer.debian_marker = self.base / 'debian_version'
        installer.redhat_marker = self.base / 'redhat-release'
        if marker:
            (self.base / marker).write_text("x\n")
        return installer

    def test_detect_distro(self):
        self.assertEqual(self.make_installer(FakeFirewall()).detect_distro(), UNKNOWN_DISTRO)
        self.assertEqual(self.make_installer(FakeFirewall(), 'redhat-release').detect_distro(), REDHAT)
        self.assertEqual(self.make_installer(FakeFirewall(), 'debian_version').detect_distro(), DEBIAN)

    def test_root_check(self):
        installer = self.make_installer(FakeFirewall())
        with patch('antiscan.managers.installer.os.geteuid', return_value=1000):
            with self.assertRaises(InstallError):
                installer.check_root_privileges()
        with patch('antiscan.managers.installer.os.geteuid', return_value=0):
            installer.check_root_privileges()

    def test_present_binaries_are_not_installed(self):
        fw = FakeFirewall()
        self.make_installer(fw, 'debian_version').ensure_dependencies()

        self.assertEqual(fw.calls_to("apt-get"), [])

    def test_missing_ipset_is_installed_noninteractively(self):
        fw = FakeFirewall(binaries=['iptables', 'ip6tables'])
        self.make_installer(fw, 'debian_version').ensure_dependencies()

        self.assertEqual(fw.calls_to("apt-get"), [("apt-get", "install", "-y", "ipset")])

    def test_ipset_retry_after_index_update(self):
        fw = FakeFirewall(binaries=['iptables', 'ip6tables'])
        installer = self.make_installer(fw, 'debian_version')
        attempts = []

        def flaky(*packages):
            attempts.append(packages)
            if len(attempts) == 1:
                raise InstallError("E: Unable to locate package ipset")
        installer.install_packages = flaky

        installer.ensure_package('ipset', retry_after_update=True)

        self.assertEqual(len(attempts), 2)
        self.assertEqual(fw.calls_to("apt-get", "update"), [("apt-get", "update")])

    def test_redhat_uses_yum(self):
        fw = FakeFirewall(binaries=['iptables', 'ip6tables'])
        self.make_installer(fw, 'redhat-release').ensure_package('ipset')

        self.assertEqual(fw.calls_to("yum"), [("yum", "install", "-y", "ipset")])

    def test_unknown_distribution_cannot_install(self):
        fw = FakeFirewall(binaries=['iptables', 'ip6tables'])
        with self.assertRaises(InstallError):
            self.make_installer(fw).ensure_package('ipset')

    def test_persistence_helper_skipped_with_ufw(self):
        fw = FakeFirewall(binaries=['iptables'], ufw_installed=True)
        self.make_installer(fw, 'debian_version').ensure_netfilter_persistent()

        self.assertEqual(fw.calls_to("apt-get"), [])

    def test_persistence_helper_installed_on_debian(self):
        fw = FakeFirewall(binaries=['iptables', 'ip6tables', 'ipset'])
        self.make_installer(fw, 'debian_version').ensure_netfilter_persistent()

        self.assertIn(("apt-get", "install", "-y", "netfilter-persistent", "iptables-persistent"),
                      fw.calls_to("apt-get"))


if __name__ == '__main__':
    unittest.main()
