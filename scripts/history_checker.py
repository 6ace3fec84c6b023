"""Standalone history checker usable as FAULTLINE_EXTERNAL_CHECKER.

Exit status: 0 linearizable, 1 violation found, anything else undetermined.
"""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

# Ensure src is in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from faultline.checker.independent import IndependentChecker
from faultline.checker.linearizable import DEFAULT_MAX_STATES, LinearizableChecker
from faultline.domain.operations import Validity
from faultline.errors import StoredRunError
from faultline.store.runs import RunStore

EXIT_CODES = {Validity.TRUE: 0, Validity.FALSE: 1, Validity.UNKNOWN: 2}


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("-t", "--test-dir", required=True, help="Run directory to analyze")
    parser.add_argument("--max-states", type=int, default=DEFAULT_MAX_STATES)
    args = parser.parse_args(argv)

    run_dir = Path(args.test_dir).resolve()
    try:
        stored = RunStore(run_dir.parent.parent).load(run_dir)
    except StoredRunError as e:
        print(f"Cannot load run: {e}", file=sys.stderr)
        return 2

    result = IndependentChecker(LinearizableChecker(args.max_states)).check(stored.history)
    print(f"{stored.record.name} {stored.record.run_id}: {result.valid.value}")
    if result.message:
        print(result.message)
    return EXIT_CODES[result.valid]


if __name__ == "__main__":
    sys.exit(main())
