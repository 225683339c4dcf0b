#!/usr/bin/env python3
"""
Test runner for the challenge engine.

    python tests/run_all_tests.py            # everything
    python tests/run_all_tests.py timing     # one category
"""
import sys
import time
import unittest
from pathlib import Path

# Project root on the path so `challenge_engine` and `tests` import
sys.path.insert(0, str(Path(__file__).parent.parent))

TEST_CATEGORIES = {
    'engine': ['tests.test_question_bank', 'tests.test_scoring', 'tests.test_session_machine'],
    'timing': ['tests.test_countdown', 'tests.test_session_timing'],
    'catalog': ['tests.test_catalog'],
    'config': ['tests.test_config_manager'],
    'controller': ['tests.test_challenge_controller'],
    'bot': ['tests.test_bot'],
}
TEST_CATEGORIES['unit'] = (
    TEST_CATEGORIES['engine'] + TEST_CATEGORIES['catalog']
    + TEST_CATEGORIES['config'] + TEST_CATEGORIES['controller']
)
FULL_RUN = ('engine', 'timing', 'catalog', 'config', 'controller', 'bot')

RULE = "=" * 70


def build_suite(module_names):
    """Load the named modules, or return None if any of them fails to import."""
    loader = unittest.TestLoader()
    suite = unittest.TestSuite()
    for name in module_names:
        try:
            suite.addTest(loader.loadTestsFromName(name))
        except (ImportError, AttributeError) as e:
            print(f"✗ {name}: {e}")
            return None
        print(f"✓ {name}")
    return suite


def report(result, elapsed):
    broken = len(result.failures) + len(result.errors)
    passed = result.testsRun - broken - len(result.skipped)
    rate = f"{passed / result.testsRun * 100:.1f}%" if result.testsRun else "N/A"

    print(RULE)
    for label, value in (
        ("Tests run", result.testsRun),
        ("Passed", passed),
        ("Failures", len(result.failures)),
        ("Errors", len(result.errors)),
        ("Skipped", len(result.skipped)),
        ("Pass rate", rate),
        ("Duration", f"{elapsed:.2f}s"),
    ):
        print(f"{label:<10} {value}")
    print(RULE)


def run(categories, verbosity=2):
    module_names = []
    for category in categories:
        for name in TEST_CATEGORIES[category]:
            if name not in module_names:
                module_names.append(name)

    print(RULE)
    print(f"Challenge engine tests: {', '.join(categories)}")
    print(RULE)

    suite = build_suite(module_names)
    if suite is None:
        return False

    started = time.time()
    result = unittest.TextTestRunner(verbosity=verbosity, stream=sys.stdout, buffer=True).run(suite)
    report(result, time.time() - started)
    return result.wasSuccessful()


if __name__ == '__main__':
    requested = sys.argv[1:] or list(FULL_RUN)
    unknown = [c for c in requested if c not in TEST_CATEGORIES]
    if unknown:
        print(f"Unknown categories: {', '.join(unknown)}")
        print(f"Available: {', '.join(TEST_CATEGORIES)}")
        sys.exit(2)

    sys.exit(0 if run(requested) else 1)
