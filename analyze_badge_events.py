#!/usr/bin/env python3
"""
analyze_badge_events.py

Read-only analysis of a simulation's outputs:
1. Lists the planted anomalies from the user-profile answer key
   (cloned badges, curious users, night-shift users)
2. Summarizes the event stream by event type and failure reason
3. Checks observed anomaly rates against the configured rates (binomial test)
4. Writes a JSON report and, optionally, records a simulated upload of it

Usage:
    python analyze_badge_events.py --profiles profiles.jsonl --events events.jsonl --output report.json
"""

import argparse
import hashlib
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd
from scipy.stats import binomtest

from simulation_config import ConfigLoader, SimulationConfig


logger = logging.getLogger("BadgeEventAnalyzer")


# =============================================================================
# Loading
# =============================================================================

def load_profiles(path: Path) -> pd.DataFrame:
    df = pd.read_json(path, lines=True, dtype=False)
    logger.info(f"Loaded {len(df)} user profiles from {path}")
    return df


def load_events(path: Path) -> pd.DataFrame:
    df = pd.read_json(path, lines=True, dtype=False, convert_dates=False)
    logger.info(f"Loaded {len(df)} events from {path}")
    return df


# =============================================================================
# Anomaly Detection (answer key)
# =============================================================================

def detect_cloned_badges(profiles: pd.DataFrame) -> List[str]:
    """User ids flagged with a cloned badge."""
    if profiles.empty:
        return []
    return profiles.loc[profiles['has_cloned_badge'].astype(bool), 'user_id'].tolist()


def detect_curious_users(profiles: pd.DataFrame) -> List[str]:
    if profiles.empty:
        return []
    return profiles.loc[profiles['is_curious'].astype(bool), 'user_id'].tolist()


def detect_night_shift_users(profiles: pd.DataFrame) -> List[Dict[str, Any]]:
    """Night-shift users with their assigned building."""
    if profiles.empty:
        return []
    night = profiles.loc[profiles['is_night_shift'].astype(bool), ['user_id', 'assigned_night_building']]
    return night.to_dict(orient='records')


# =============================================================================
# Event Summary
# =============================================================================

def summarize_events(events: pd.DataFrame) -> Dict[str, Any]:
    """Counts by event type and failure reason; optional columns may be absent."""
    summary: Dict[str, Any] = {
        'total_events': int(len(events)),
        'successful_events': int(events['success'].astype(bool).sum()) if 'success' in events else 0,
    }
    if 'event_type' in events:
        summary['by_event_type'] = {str(k): int(v) for k, v in events['event_type'].value_counts().items()}
    if 'failure_reason' in events:
        summary['by_failure_reason'] = {
            str(k): int(v) for k, v in events['failure_reason'].dropna().value_counts().items()
        }
    if 'metadata' in events:
        night = events['metadata'].apply(
            lambda m: isinstance(m, dict) and bool(m.get('is_night_shift_event')))
        summary['night_shift_events'] = int(night.sum())
    if 'user_id' in events:
        summary['distinct_users'] = int(events['user_id'].nunique())
    return summary


# =============================================================================
# Rate Checks
# =============================================================================

def check_rates(profiles: pd.DataFrame, config: SimulationConfig,
                alpha: float = 0.01) -> Dict[str, Dict[str, Any]]:
    """
    Two-sided binomial test of each Bernoulli-assigned flag against its
    configured rate. Night shift is assigned per building, so it is not tested.
    """
    checks = {
        'is_curious': config.curious_user_percentage,
        'has_cloned_badge': config.cloned_badge_percentage,
    }
    n = int(len(profiles))
    results: Dict[str, Dict[str, Any]] = {}

    for column, expected in checks.items():
        observed = int(profiles[column].astype(bool).sum()) if n else 0
        entry: Dict[str, Any] = {
            'observed': observed,
            'population': n,
            'expected_rate': expected,
            'observed_rate': round(observed / n, 6) if n else 0.0,
        }
        if n == 0:
            entry.update({'p_value': None, 'passed': True})
        else:
            p_value = binomtest(observed, n, expected).pvalue
            entry.update({'p_value': round(float(p_value), 6), 'passed': bool(p_value >= alpha)})
            if p_value < alpha:
                logger.warning(f"{column}: observed rate {entry['observed_rate']:.4f} "
                               f"differs from configured {expected:.4f} (p={p_value:.4g})")
        results[column] = entry

    return results


# =============================================================================
# Report
# =============================================================================

def generate_report(profiles_path: Path, events_path: Optional[Path] = None,
                    config: Optional[SimulationConfig] = None,
                    output_path: Optional[Path] = None) -> Dict[str, Any]:
    """Build the anomaly report; also write it when output_path is given."""
    config = config or SimulationConfig()
    profiles = load_profiles(profiles_path)

    cloned = detect_cloned_badges(profiles)
    curious = detect_curious_users(profiles)
    night_shift = detect_night_shift_users(profiles)

    report: Dict[str, Any] = {
        'generated_at': datetime.now(timezone.utc).isoformat(),
        'anomalies': {
            'cloned_badges': cloned,
            'curious_users': curious,
            'night_shift_users': night_shift,
        },
        'summary': {
            'total_users': int(len(profiles)),
            'cloned_badge_count': len(cloned),
            'curious_user_count': len(curious),
            'night_shift_count': len(night_shift),
        },
        'rate_checks': check_rates(profiles, config),
    }

    if events_path is not None:
        report['events'] = summarize_events(load_events(events_path))

    logger.info(f"Anomalies: {len(cloned)} cloned badges, {len(curious)} curious users, "
                f"{len(night_shift)} night-shift users")

    if output_path is not None:
        write_report(report, output_path)
    return report


def write_report(report: Dict[str, Any], output_path: Path) -> Path:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(report, f, indent=2, default=str)
    logger.info(f"Report saved to {output_path}")
    return output_path


def simulate_s3_upload(report_path: Path, bucket: str, key: Optional[str] = None) -> Dict[str, Any]:
    """
    Pretend to upload the report: compute what an upload would record and
    append it to the report under 'upload'. No network access.
    """
    report_path = Path(report_path)
    payload = report_path.read_bytes()
    upload = {
        'bucket': bucket,
        'key': key or f"badge-analysis/{report_path.name}",
        'size_bytes': len(payload),
        'etag': hashlib.md5(payload).hexdigest(),
        'uploaded_at': datetime.now(timezone.utc).isoformat(),
        'simulated': True,
    }

    with open(report_path, 'r', encoding='utf-8') as f:
        report = json.load(f)
    report['upload'] = upload
    write_report(report, report_path)

    logger.info(f"Simulated upload of {report_path} to s3://{upload['bucket']}/{upload['key']}")
    return upload


# =============================================================================
# Main
# =============================================================================

def setup_logging(level: str = 'INFO') -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s'
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description='Analyze badge simulation output against its answer key',
        formatter_class=argparse.ArgumentDefaultsHelpFormatter
    )
    parser.add_argument('--profiles', type=Path, required=True,
                        help='User-profile NDJSON written by the simulator')
    parser.add_argument('--events', type=Path, default=None,
                        help='Event NDJSON captured from the simulator stdout')
    parser.add_argument('--config', type=Path, default=None,
                        help='Simulation config JSON (for expected rates)')
    parser.add_argument('--output', type=Path, default=Path('analysis_report.json'),
                        help='Where to write the JSON report')
    parser.add_argument('--upload-bucket', default=None,
                        help='Record a simulated upload of the report to this bucket')
    parser.add_argument('-v', '--verbose', action='store_true',
                        help='Enable verbose (DEBUG) logging')
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Returns 0 when every rate check passes, 1 otherwise."""
    args = parse_args(argv)
    setup_logging('DEBUG' if args.verbose else 'INFO')

    config = ConfigLoader(args.config).load() if args.config else SimulationConfig()
    report = generate_report(args.profiles, args.events, config, args.output)

    if args.upload_bucket:
        simulate_s3_upload(args.output, args.upload_bucket)

    passed = all(check['passed'] for check in report['rate_checks'].values())
    return 0 if passed else 1


if __name__ == '__main__':
    raise SystemExit(main())
