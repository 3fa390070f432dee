"""
Snyk API client used by the pruner.

Wraps a requests.Session with the REST pagination scheme (``links.next``),
a shared 429 backoff and a minimum spacing between requests. Listing calls are
retried a bounded number of times; delete calls are never retried after a
failure, only re-sent when Snyk rejected them unprocessed with a 429.
"""

import logging
import random
import time
from typing import Dict, Iterator, List, Optional

import requests

from .config import DEFAULT_API_VERSION, DEFAULT_REGION, REGION_URLS, PrunerConfig
from .exceptions import AuthError, DeletionError, NetworkError
from .models import JiraIssueRef, Org, ProjectInfo, TargetInfo

logger = logging.getLogger(__name__)

MAX_RETRIES = 3
PAGE_LIMIT = 100
REQUEST_TIMEOUT = 30


class RateLimiter:
    """Handles rate limiting with a fixed backoff window for 429 responses."""

    def __init__(self, backoff_seconds: float = 60):
        self.backoff_seconds = backoff_seconds
        self.backoff_until = 0.0

    def handle_429(self, endpoint: str, retry_after: Optional[str] = None):
        """Handle 429 rate limit response with backoff."""
        current_time = time.time()

        # If we're already in backoff, wait out the remainder
        if current_time < self.backoff_until:
            wait_time = self.backoff_until - current_time
            logger.warning(f"Rate limited on {endpoint}. Waiting {wait_time:.1f} seconds...")
            time.sleep(wait_time)
            return

        wait_time = self.backoff_seconds
        if retry_after and retry_after.isdigit():
            wait_time = float(retry_after)
        self.backoff_until = current_time + wait_time
        logger.warning(f"Rate limited on {endpoint}. Backing off for {wait_time:.0f} seconds...")
        time.sleep(wait_time)

    def is_in_backoff(self) -> bool:
        """Check if we're currently in a backoff period."""
        return time.time() < self.backoff_until


class SnykClient:
    """Snyk API client for listing and deleting projects and targets."""

    def __init__(self, token: str, region: str = DEFAULT_REGION, api_version: str = DEFAULT_API_VERSION,
                 auth_scheme: str = "token", request_interval: float = 0.5):
        self.base_url = REGION_URLS.get(region, REGION_URLS[DEFAULT_REGION])
        self.api_version = api_version
        self.request_interval = request_interval
        self.session = requests.Session()
        self.session.headers.update({
            'Authorization': f'{auth_scheme} {token}',
            'Content-Type': 'application/vnd.api+json',
            'Accept': '*/*'
        })
        self.rate_limiter = RateLimiter()
        self._last_request = 0.0

    @classmethod
    def from_config(cls, config: PrunerConfig) -> 'SnykClient':
        return cls(
            config.token,
            region=config.region,
            api_version=config.api_version,
            auth_scheme=config.auth_scheme,
            request_interval=config.request_interval,
        )

    def _throttle(self):
        wait_time = self.request_interval - (time.monotonic() - self._last_request)
        if wait_time > 0:
            time.sleep(wait_time)
        self._last_request = time.monotonic()

    def _send(self, method: str, url: str, params: Optional[Dict] = None) -> requests.Response:
        if self.rate_limiter.is_in_backoff():
            time.sleep(5 + random.uniform(0, 5))  # Random jitter
        self._throttle()
        return self.session.request(method, url, params=params, timeout=REQUEST_TIMEOUT)

    def _absolute_url(self, next_url: str) -> str:
        if next_url.startswith('http'):
            return next_url
        return self.base_url + '/' + next_url.lstrip('/')

    def _get_json(self, url: str, params: Optional[Dict] = None):
        """GET a JSON document, retrying transient failures a bounded number of times."""
        last_error = None
        for attempt in range(MAX_RETRIES):
            try:
                response = self._send('GET', url, params)
            except requests.exceptions.RequestException as e:
                last_error = str(e)
                logger.warning(f"Error fetching {url} (attempt {attempt + 1}): {e}")
            else:
                if response.status_code == 429:
                    self.rate_limiter.handle_429(f"GET {url}", response.headers.get('Retry-After'))
                    continue
                if response.status_code in (401, 403):
                    raise AuthError(f"Snyk rejected the credential ({response.status_code}) for {url}")
                if response.status_code < 500:
                    try:
                        response.raise_for_status()
                    except requests.exceptions.HTTPError as e:
                        raise NetworkError(f"Error fetching {url}: {e}") from e
                    try:
                        return response.json()
                    except ValueError as e:
                        raise NetworkError(f"Unreadable response from {url}: {e}") from e
                last_error = f"status {response.status_code}"
                logger.warning(f"Server error fetching {url} (attempt {attempt + 1}): {response.status_code}")

            if attempt < MAX_RETRIES - 1:
                time.sleep(1 + random.uniform(0, 2))  # Random backoff

        raise NetworkError(f"Giving up on {url} after {MAX_RETRIES} attempts: {last_error}")

    def _paginate(self, path: str, params: Optional[Dict] = None) -> Iterator[Dict]:
        """Yield every item of a paginated REST collection."""
        next_url = f"{self.base_url}/rest{path}"
        next_params = {'version': self.api_version, 'limit': PAGE_LIMIT}
        next_params.update(params or {})
        page = 1

        while next_url:
            logger.debug(f"Fetching {path} page {page}...")
            data = self._get_json(next_url, next_params)
            yield from data.get('data', [])

            next_url = data.get('links', {}).get('next')
            next_params = None
            if next_url:
                next_url = self._absolute_url(next_url)
            page += 1

    def _delete(self, url: str, item_id: str, params: Optional[Dict] = None):
        """Issue a DELETE; 404 means it is already gone."""
        for attempt in range(MAX_RETRIES):
            try:
                response = self._send('DELETE', url, params)
            except requests.exceptions.RequestException as e:
                raise DeletionError(item_id, f"Error deleting {item_id}: {e}") from e

            if response.status_code == 429:
                self.rate_limiter.handle_429(f"DELETE {item_id}", response.headers.get('Retry-After'))
                logger.warning(f"Re-sending rate limited delete of {item_id} (attempt {attempt + 2})")
                continue

            # 404 means the item is not found (already deleted) - treat as success
            if response.status_code == 404:
                logger.debug(f"{item_id} not found (already deleted)")
                return

            # 204 No Content is also a success status for DELETE operations
            if response.status_code in (200, 204):
                logger.info(f"Successfully deleted {item_id}")
                return

            raise DeletionError(
                item_id,
                f"Delete of {item_id} failed with status {response.status_code}: {response.text}",
                response.status_code,
            )

        raise DeletionError(item_id, f"Delete of {item_id} still rate limited after {MAX_RETRIES} attempts", 429)

    def list_orgs(self) -> List[Org]:
        """Get all organizations visible to the credential."""
        orgs = [Org.from_api(item) for item in self._paginate("/orgs")]
        logger.info(f"Found {len(orgs)} total organizations")
        return orgs

    def list_projects(self, org_id: str) -> List[ProjectInfo]:
        """Get all projects for an organization."""
        projects = [ProjectInfo.from_api(item) for item in self._paginate(f"/orgs/{org_id}/projects")]
        logger.info(f"Found {len(projects)} total projects for org {org_id}")
        return projects

    def list_issue_refs(self, org_id: str, project_id: str) -> Dict[str, List[JiraIssueRef]]:
        """Get the Jira issues created from a project's findings, keyed by Snyk issue id."""
        url = f"{self.base_url}/v1/org/{org_id}/project/{project_id}/jira-issues"
        data = self._get_json(url) or {}
        return {
            issue_id: [JiraIssueRef.from_api(entry) for entry in entries]
            for issue_id, entries in data.items()
        }

    def delete_project(self, org_id: str, project_id: str):
        """Delete a specific project from an organization."""
        logger.info(f"Deleting project {project_id} from org {org_id}...")
        self._delete(f"{self.base_url}/rest/orgs/{org_id}/projects/{project_id}", project_id,
                     {'version': self.api_version})

    def list_targets(self, org_id: str, include_empty: bool = True) -> List[TargetInfo]:
        """Get all targets for an organization, optionally including ones without projects."""
        params = {'exclude_empty': 'false' if include_empty else 'true'}
        targets = [TargetInfo.from_api(item) for item in self._paginate(f"/orgs/{org_id}/targets", params)]
        logger.info(f"Found {len(targets)} total targets for org {org_id}")
        return targets

    def delete_target(self, org_id: str, target_id: str):
        """Delete a specific target from an organization."""
        logger.info(f"Deleting target {target_id} from org {org_id}...")
        self._delete(f"{self.base_url}/rest/orgs/{org_id}/targets/{target_id}", target_id,
                     {'version': self.api_version})
