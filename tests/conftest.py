"""Placeholder connection settings so jenkins_admin.jenkins_api imports without a .env file."""

import os

os.environ.setdefault("JENKINS_URL", "http://jenkins.test")
os.environ.setdefault("JENKINS_USER", "tester")
os.environ.setdefault("JENKINS_TOKEN", "test-token")
