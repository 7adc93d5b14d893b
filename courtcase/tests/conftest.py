"""Test configuration shared by the courtcase test suites."""

import email_validator

# The suites use reserved ``.test`` addresses; email-validator rejects them
# unless its documented test-environment switch is on.
email_validator.TEST_ENVIRONMENT = True
