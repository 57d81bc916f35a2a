"""
Unit tests for configuration.
"""

import unittest
from argparse import Namespace

from config import BuilderConfig


class TestBuilderConfig(unittest.TestCase):
    """Test BuilderConfig data model."""

    def test_config_defaults(self):
        """Test default configuration values."""
        config = BuilderConfig(source_dir="./app", image_name="app", project_id="my-project")
        self.assertEqual(config.project_id, "my-project")
        self.assertIsNone(config.tag)
        self.assertEqual(config.vm_name, "docker-builder-vm")
        self.assertEqual(config.zone, "europe-west1-b")
        self.assertEqual(config.registry_location, "europe-west1")
        self.assertEqual(config.repository, "docker-images")
        self.assertEqual(config.remote_dir, "/tmp/remote_docker_build_context")
        self.assertFalse(config.no_cleanup)
        self.assertEqual(config.vm_timeout, 300)
        self.assertEqual(config.ssh_timeout, 120)
        self.assertIsNone(config.command_timeout)
        self.assertEqual(config.poll_interval, 5)
        self.assertEqual(config.ssh_port, 22)
        self.assertFalse(config.strict_reachability)
        self.assertFalse(config.verbose)

    def test_config_from_args(self):
        """Test creating config from command-line arguments."""
        args = Namespace(
            source_dir="./app",
            image_name="gcs-downloader",
            project="test-project",
            tag="v2",
            vm_name="builder",
            zone="us-central1-a",
            registry_location="us-central1",
            repository="images",
            remote_dir="/srv/build",
            no_cleanup=True,
            vm_timeout=600,
            ssh_timeout=60,
            command_timeout=1800,
            poll_interval=10,
            ssh_port=2222,
            strict_reachability=True,
            verbose=True,
        )
        config = BuilderConfig.from_args(args)

        self.assertEqual(config.source_dir, "./app")
        self.assertEqual(config.image_name, "gcs-downloader")
        self.assertEqual(config.project_id, "test-project")
        self.assertEqual(config.tag, "v2")
        self.assertEqual(config.vm_name, "builder")
        self.assertEqual(config.zone, "us-central1-a")
        self.assertEqual(config.registry_location, "us-central1")
        self.assertEqual(config.repository, "images")
        self.assertEqual(config.remote_dir, "/srv/build")
        self.assertTrue(config.no_cleanup)
        self.assertEqual(config.vm_timeout, 600)
        self.assertEqual(config.ssh_timeout, 60)
        self.assertEqual(config.command_timeout, 1800)
        self.assertEqual(config.poll_interval, 10)
        self.assertEqual(config.ssh_port, 2222)
        self.assertTrue(config.strict_reachability)
        self.assertTrue(config.verbose)


if __name__ == "__main__":
    unittest.main()
