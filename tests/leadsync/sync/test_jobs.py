"""Tests for leadsync.sync.jobs — RQ enqueue, the all-agencies sweep and its command line."""
import json
from unittest.mock import MagicMock, patch

import pytest

from leadsync.sync.engine import SyncSummary
from leadsync.sync.jobs import (
    enqueue_sync, enqueue_all_agencies, run_sync_job, sync_all_agencies, main, JOB_TIMEOUT,
)
from leadsync.sync.lock import SyncAlreadyRunningError


class TestEnqueueSync:

    def test_enqueues_job_with_timeout(self):
        queue = MagicMock()
        queue.enqueue.return_value = MagicMock(id='job-1')
        with patch('leadsync.sync.jobs._get_queue', return_value=queue):
            job = enqueue_sync('agency-1', force_full_sync=True)
        assert job.id == 'job-1'
        queue.enqueue.assert_called_once_with(run_sync_job, 'agency-1', True, job_timeout=JOB_TIMEOUT)


class TestRunSyncJob:

    def test_returns_summary_dict(self):
        with patch('leadsync.sync.service.run_sync', return_value=SyncSummary(total=4)) as run_sync, \
             patch('rq.get_current_job', return_value=MagicMock(id='job-9')), \
             patch('leadsync.logging_config.configure_logging') as configure:
            result = run_sync_job('agency-1', False)
        configure.assert_called_once()
        run_sync.assert_called_once_with('agency-1', force_full_sync=False)
        assert result['total'] == 4


class TestSyncAllAgencies:

    def test_failures_do_not_stop_other_agencies(self, make_settings):
        make_settings('agency-1')
        make_settings('agency-2')
        make_settings('agency-3')

        def fake_run(agency_id, **kwargs):
            if agency_id == 'agency-2':
                raise SyncAlreadyRunningError(agency_id)
            if agency_id == 'agency-3':
                raise RuntimeError('Trello returned 503')
            return SyncSummary(total=1)

        with patch('leadsync.sync.service.run_sync', side_effect=fake_run):
            results = sync_all_agencies()

        assert results['agency-1']['total'] == 1
        assert results['agency-2'] == {'skipped': True}
        assert results['agency-3'] == {'error': 'Trello returned 503'}

    def test_full_flag_passed_through(self, make_settings):
        make_settings('agency-1')
        with patch('leadsync.sync.service.run_sync', return_value=SyncSummary()) as run_sync:
            sync_all_agencies(force_full_sync=True)
        run_sync.assert_called_once_with('agency-1', force_full_sync=True)


class TestEnqueueAll:

    def test_one_job_per_agency(self, make_settings):
        make_settings('agency-1')
        make_settings('agency-2')
        queue = MagicMock()
        queue.enqueue.side_effect = [MagicMock(id='job-1'), MagicMock(id='job-2')]
        with patch('leadsync.sync.jobs._get_queue', return_value=queue):
            assert enqueue_all_agencies() == {'agency-1': 'job-1', 'agency-2': 'job-2'}


class TestMain:

    @pytest.fixture(autouse=True)
    def _no_logging_setup(self):
        with patch('leadsync.logging_config.configure_logging'):
            yield

    def test_default_runs_inline_sweep(self, capsys):
        with patch('leadsync.sync.jobs.sync_all_agencies', return_value={'agency-1': {'total': 2}}) as sweep:
            assert main([]) == 0
        sweep.assert_called_once_with(force_full_sync=False)
        assert json.loads(capsys.readouterr().out) == {'agency-1': {'total': 2}}

    def test_failed_agency_sets_exit_code(self):
        with patch('leadsync.sync.jobs.sync_all_agencies', return_value={'agency-1': {'error': 'Timed out'}}):
            assert main([]) == 1

    def test_enqueue_mode(self):
        with patch('leadsync.sync.jobs.enqueue_all_agencies', return_value={'agency-1': 'job-1'}) as enqueue_all:
            assert main(['--enqueue', '--full']) == 0
        enqueue_all.assert_called_once_with(force_full_sync=True)

    def test_single_agency(self):
        with patch('leadsync.sync.service.run_sync', return_value=SyncSummary(total=1)) as run_sync:
            assert main(['--agency', 'agency-7']) == 0
        run_sync.assert_called_once_with('agency-7', force_full_sync=False)
