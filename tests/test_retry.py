#!/usr/bin/env python3
"""
Unit tests for retry utilities.
"""

import os
import sys
import unittest
from unittest.mock import Mock, patch

# Add the project directory to the path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from group_sync.retry import (
    MaxRetriesExceeded,
    TransientBackendError,
    create_retry_callback,
    is_retryable_error,
    retry_call,
    retry_settings,
)


@patch('group_sync.retry.time.sleep')
class TestRetryCall(unittest.TestCase):
    """Test cases for retry_call."""

    def test_success_first_attempt(self, mock_sleep):
        func = Mock(return_value='ok')
        self.assertEqual(retry_call(func, args=(1,), kwargs={'x': 2}), 'ok')
        func.assert_called_once_with(1, x=2)
        mock_sleep.assert_not_called()

    def test_success_after_transient_failures(self, mock_sleep):
        func = Mock(side_effect=[ConnectionError('reset'), TimeoutError('slow'), 'ok'])

        self.assertEqual(retry_call(func, max_attempts=3, delay=1, backoff=2), 'ok')

        self.assertEqual(func.call_count, 3)
        self.assertEqual([c[0][0] for c in mock_sleep.call_args_list], [1, 2])

    def test_max_retries_exceeded(self, mock_sleep):
        func = Mock(side_effect=TransientBackendError('HTTP 503', status_code=503))

        with self.assertRaises(MaxRetriesExceeded) as context:
            retry_call(func, max_attempts=2, delay=0)

        self.assertEqual(context.exception.attempts, 2)
        self.assertIsInstance(context.exception.last_exception, TransientBackendError)
        self.assertEqual(func.call_count, 2)

    def test_non_retryable_propagates(self, mock_sleep):
        func = Mock(side_effect=ValueError('bad input'))
        with self.assertRaises(ValueError):
            retry_call(func, max_attempts=5)
        func.assert_called_once()

    def test_retry_after_overrides_delay(self, mock_sleep):
        func = Mock(side_effect=[TransientBackendError('429', status_code=429, retry_after=7), 'ok'])
        retry_call(func, max_attempts=2, delay=1)
        mock_sleep.assert_called_once_with(7)

    def test_wait_capped(self, mock_sleep):
        func = Mock(side_effect=[TransientBackendError('429', retry_after=3600), 'ok'])
        retry_call(func, max_attempts=2, delay=1, max_delay=60)
        mock_sleep.assert_called_once_with(60)

    def test_on_retry_callback(self, mock_sleep):
        callback = Mock()
        error = ConnectionError('reset')
        retry_call(Mock(side_effect=[error, 'ok']), max_attempts=2, delay=0, on_retry=callback)
        callback.assert_called_once_with(1, error)

    def test_failing_callback_does_not_stop_retries(self, mock_sleep):
        callback = Mock(side_effect=RuntimeError('callback broke'))
        result = retry_call(Mock(side_effect=[ConnectionError('x'), 'ok']), max_attempts=2, delay=0,
                            on_retry=callback)
        self.assertEqual(result, 'ok')


class TestRetryHelpers(unittest.TestCase):
    """Test cases for the retry helper functions."""

    def test_retry_settings(self):
        settings = retry_settings({'max_retries': 3, 'retry_wait_seconds': 5, 'retry_backoff': 2})
        self.assertEqual(settings, {'max_attempts': 4, 'delay': 5.0, 'backoff': 2.0})

    def test_retry_settings_defaults(self):
        self.assertEqual(retry_settings({})['max_attempts'], 4)

    def test_is_retryable_error(self):
        self.assertTrue(is_retryable_error(ConnectionError()))
        self.assertTrue(is_retryable_error(TransientBackendError('x')))
        self.assertTrue(is_retryable_error(Exception('Service Unavailable')))

        throttled = Exception('slow down')
        throttled.status_code = 429
        self.assertTrue(is_retryable_error(throttled))

        forbidden = Exception('forbidden')
        forbidden.status_code = 403
        self.assertFalse(is_retryable_error(forbidden))
        self.assertFalse(is_retryable_error(ValueError('invalid value')))

    def test_create_retry_callback(self):
        callback = create_retry_callback('GET groups')
        with self.assertLogs('group_sync.retry', level='WARNING') as logs:
            callback(2, ConnectionError('reset'))
        self.assertIn('GET groups failed on attempt 2', logs.output[0])


if __name__ == '__main__':
    unittest.main()
