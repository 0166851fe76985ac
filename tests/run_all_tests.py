"""
Run the whole suite and write the consolidated report to ara_test_report.log.
"""

import sys
import os
import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tests.test_logger import test_logger


# Leaf modules first, HTTP surface last
TEST_FILES = [
    "tests/test_config.py",
    "tests/test_models.py",
    "tests/test_lexical_parser.py",
    "tests/test_ai_parser.py",
    "tests/test_classifier.py",
    "tests/test_validator.py",
    "tests/test_analytics.py",
    "tests/test_session_store.py",
    "tests/test_auth.py",
    "tests/test_gateways.py",
    "tests/test_connection.py",
    "tests/test_orchestrator.py",
    "tests/test_api.py",
]


def run_all_tests():
    test_logger.logger.info("Starting Ara Voice test run...")

    exit_code = pytest.main(["-v", "--tb=short", "--disable-warnings", *TEST_FILES])

    summary = test_logger.generate_summary()
    if summary['failed'] == 0:
        test_logger.logger.info("✓ ALL TESTS PASSED!")
    else:
        test_logger.logger.info(f"✗ {summary['failed']} TESTS FAILED")

    return exit_code


if __name__ == "__main__":
    sys.exit(run_all_tests())
