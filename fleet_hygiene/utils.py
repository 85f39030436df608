import datetime
import time

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from fleet_hygiene import logger


def status_print(line_to_print, end="\n"):
    ctime = datetime.datetime.now()
    ctime_str = ctime.strftime("%Y-%m-%d %H:%M:%S")
    print(f"{ctime_str}: {line_to_print}", end=end, flush=True)


# https://www.peterbe.com/plog/best-practice-with-retries-with-requests
def requests_retry_session(
    retries=3,
    backoff_factor=0.3,
    status_forcelist=(500, 502, 504),
    session=None,
):
    session = session or requests.Session()
    retry = Retry(
        total=retries,
        read=retries,
        connect=retries,
        backoff_factor=backoff_factor,
        status_forcelist=status_forcelist,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


def chunked(a_list, size):
    for i in range(0, len(a_list), size):
        yield a_list[i : i + size]


def backoff_delay(attempt, backoff_factor):
    # attempt 0 is the first retry
    return backoff_factor * (2**attempt)


# returns (result, attempts)
#   - retries_allowed is the number of retries after the first try
#   - should_continue is checked before every retry, returning False gives up early
def retry_call(
    func,
    retry_on,
    retries_allowed,
    backoff_factor=0.3,
    should_continue=None,
    sleep=time.sleep,
    description="call",
):
    retries_left = retries_allowed
    attempt = 0
    while True:
        attempt += 1
        try:
            return func(), attempt
        except retry_on as e:
            if retries_left <= 0:
                logger.error("%s: failed %s time(s), giving up: %s" % (description, attempt, e))
                raise
            if should_continue is not None and not should_continue():
                logger.warning("%s: not retrying, pass cancelled: %s" % (description, e))
                raise
            delay = backoff_delay(retries_allowed - retries_left, backoff_factor)
            logger.warning("%s: attempt %s failed (%s), retrying in %.2fs" % (description, attempt, e, delay))
            sleep(delay)
        retries_left -= 1
