"""
Tests for ordered progress reporting.
"""

from services.progress import ProgressReporter


class TestProgressReporter:

    def test_percent_never_decreases(self, progress_events):
        reporter = ProgressReporter(progress_events)
        reporter.update('parsing', 20, 'a')
        reporter.update('parsing', 10, 'b')
        reporter.update('reconciling', 150, 'c')

        assert [e['percent'] for e in progress_events.events] == [20, 20, 100]

    def test_single_terminal_event(self, progress_events):
        reporter = ProgressReporter(progress_events)
        reporter.update('parsing', 50, 'half way')
        reporter.complete('done')
        reporter.fail('too late')
        reporter.update('parsing', 60, 'ignored')

        terminal = [e for e in progress_events.events if e['stage'] in ('complete', 'error')]
        assert len(terminal) == 1
        assert terminal[0]['completed'] is True
        assert terminal[0]['percent'] == 100.0
        assert reporter.finished

    def test_fail_keeps_percent(self, progress_events):
        reporter = ProgressReporter(progress_events)
        reporter.update('reconciling', 42, 'working')
        reporter.fail('store down')

        last = progress_events.events[-1]
        assert last['stage'] == 'error'
        assert last['percent'] == 42
        assert last['error'] == 'store down'
        assert last['completed'] is False

    def test_scaled_view(self):
        reporter = ProgressReporter()
        view = reporter.scaled(40, 60)
        view.update('reconciling', 50, 'half of the slice')

        assert reporter.percent == 50
        assert reporter.events[-1].progress_percent == 50

    def test_callback_failure_does_not_abort(self):
        def broken(*args):
            raise RuntimeError('listener gone')

        reporter = ProgressReporter(broken)
        reporter.update('parsing', 10, 'still fine')
        reporter.complete()

        assert len(reporter.events) == 2
