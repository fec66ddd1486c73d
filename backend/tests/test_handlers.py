"""
Tests for the API Gateway handlers, wired to in-memory services.
"""
import json
from unittest.mock import patch

import pytest

from conftest import DOER_A, SUPERVISOR, USER
from handlers.projects import (
    auto_approve_projects,
    claim_project,
    create_project,
    list_pool,
    project_events,
    submit_for_qc,
    submit_quote,
)
from handlers.qc import decide_qc
from handlers.wallet import confirm_payout, get_wallet, request_payout
from shared.models import Role, TransactionType


def api_event(sub=None, groups='', body=None, path=None, query=None):
    event = {
        'httpMethod': 'POST',
        'pathParameters': path,
        'queryStringParameters': query,
        'body': json.dumps(body) if body is not None else None,
        'requestContext': {},
    }
    if sub:
        event['requestContext']['authorizer'] = {'claims': {'sub': sub, 'cognito:groups': groups}}
    return event


def body_of(response):
    return json.loads(response['body'])


class TestClaimHandler:

    def test_claim_and_lose(self, lifecycle, make_paid_project):
        project_id = make_paid_project()

        with patch.object(claim_project, 'lifecycle', lifecycle):
            won = claim_project.handler(api_event('doer-a', 'doer', path={'projectId': project_id}), None)
            lost = claim_project.handler(api_event('doer-b', 'doer', path={'projectId': project_id}), None)

        assert won['statusCode'] == 200
        assert body_of(won)['status'] == 'assigned'
        assert won['headers']['Access-Control-Allow-Origin'] == '*'
        assert lost['statusCode'] == 409
        assert body_of(lost)['message'] == 'This task was just taken'
        assert body_of(lost)['error'] == 'ALREADY_ASSIGNED'

    def test_cancelled_project(self, lifecycle, make_paid_project):
        project_id = make_paid_project()
        lifecycle.cancel(project_id, USER)

        with patch.object(claim_project, 'lifecycle', lifecycle):
            response = claim_project.handler(api_event('doer-a', 'doer', path={'projectId': project_id}), None)

        assert response['statusCode'] == 409
        assert body_of(response)['error'] == 'NOT_CLAIMABLE'

    def test_unauthenticated(self, lifecycle):
        with patch.object(claim_project, 'lifecycle', lifecycle):
            response = claim_project.handler(api_event(path={'projectId': 'p-1'}), None)

        assert response['statusCode'] == 401

    def test_missing_project(self, lifecycle):
        with patch.object(claim_project, 'lifecycle', lifecycle):
            response = claim_project.handler(api_event('doer-a', 'doer', path={'projectId': 'nope'}), None)

        assert response['statusCode'] == 404


class TestProjectHandlers:

    def test_create_submits_by_default(self, lifecycle):
        body = {'title': 'Essay on tides', 'wordCount': 2000, 'deadline': '2026-10-20T05:00:00Z'}

        with patch.object(create_project, 'lifecycle', lifecycle):
            submitted = create_project.handler(api_event('user-1', 'user', body=body), None)
            draft = create_project.handler(api_event('user-1', 'user', body={**body, 'submit': False}), None)

        assert submitted['statusCode'] == 201
        assert body_of(submitted)['status'] == 'submitted'
        assert body_of(draft)['status'] == 'draft'

    def test_create_with_bad_input(self, lifecycle):
        with patch.object(create_project, 'lifecycle', lifecycle):
            response = create_project.handler(api_event('user-1', 'user', body={'wordCount': 10}), None)

        assert response['statusCode'] == 400
        assert body_of(response)['error'] == 'INVALID_INPUT'

    def test_quote(self, lifecycle):
        project = lifecycle.create_project(
            USER,
            {'title': 'Essay', 'wordCount': 2000, 'deadline': '2026-10-20T05:00:00Z'}
        )
        project_id = project['projectId']
        lifecycle.submit(project_id, USER)
        lifecycle.start_analysis(project_id, SUPERVISOR)
        body = {'wordCount': 2000, 'pageCount': 0, 'urgencyHours': 20, 'complexity': 'medium'}

        with patch.object(submit_quote, 'lifecycle', lifecycle):
            response = submit_quote.handler(api_event('sup-1', 'supervisor', body=body, path={'projectId': project_id}), None)
            missing = submit_quote.handler(api_event('sup-1', 'supervisor', body={}, path={'projectId': project_id}), None)
            garbled = submit_quote.handler(
                api_event('sup-1', 'supervisor', body={**body, 'wordCount': 'abc'}, path={'projectId': project_id}), None
            )

        assert garbled['statusCode'] == 400
        assert body_of(garbled)['error'] == 'INVALID_INPUT'
        assert response['statusCode'] == 200
        assert body_of(response)['quote']['userQuote'] == 7200
        assert body_of(response)['quote']['doerPayout'] == 4680
        assert missing['statusCode'] == 400

    def test_pool_shows_open_projects_to_doers(self, lifecycle, make_paid_project):
        project_id = make_paid_project()

        with patch.object(list_pool, 'lifecycle', lifecycle):
            response = list_pool.handler(api_event('doer-a', 'doer'), None)
            refused = list_pool.handler(api_event('user-1', 'user'), None)

        listed, = body_of(response)['projects']
        assert listed['projectId'] == project_id
        assert listed['doerPayout'] == 4680
        assert set(listed) == set(list_pool.POOL_FIELDS)
        assert refused['statusCode'] == 403

    def test_submit_for_qc(self, lifecycle, make_paid_project):
        project_id = make_paid_project()
        lifecycle.claim_project(project_id, DOER_A.actor_id, DOER_A)
        lifecycle.start_work(project_id, DOER_A)
        body = {'deliverables': ['s3://deliverables/final.docx']}

        with patch.object(submit_for_qc, 'lifecycle', lifecycle):
            bad = submit_for_qc.handler(api_event('doer-a', 'doer', body={'deliverables': 'x'}, path={'projectId': project_id}), None)
            response = submit_for_qc.handler(api_event('doer-a', 'doer', body=body, path={'projectId': project_id}), None)

        assert bad['statusCode'] == 400
        assert response['statusCode'] == 200
        assert body_of(response)['status'] == 'submitted_for_qc'

    def test_event_routing(self, lifecycle, make_paid_project):
        project_id = make_paid_project()

        with patch.object(project_events, 'lifecycle', lifecycle):
            response = project_events.handler(
                api_event('sup-1', 'supervisor', body={'event': 'start_assigning'}, path={'projectId': project_id}), None
            )
            invalid = project_events.handler(
                api_event('sup-1', 'supervisor', body={'event': 'deliver'}, path={'projectId': project_id}), None
            )

        assert response['statusCode'] == 200
        assert body_of(response)['status'] == 'assigning'
        assert invalid['statusCode'] == 409
        assert body_of(invalid)['error'] == 'INVALID_TRANSITION'
        assert body_of(invalid)['status'] == 'assigning'

    @pytest.mark.parametrize('event_name', [None, 'teleport', 'claim', 'approve_qc'])
    def test_unsupported_events(self, lifecycle, event_name):
        with patch.object(project_events, 'lifecycle', lifecycle):
            response = project_events.handler(
                api_event('sup-1', 'supervisor', body={'event': event_name}, path={'projectId': 'p-1'}), None
            )

        assert response['statusCode'] == 400

    def test_auto_approve(self, lifecycle, make_submitted_project, clock):
        project_id = make_submitted_project()
        lifecycle.decide_qc(project_id, 'approve', SUPERVISOR)
        lifecycle.deliver(project_id, SUPERVISOR)
        clock.advance(hours=73)

        with patch.object(auto_approve_projects, 'lifecycle', lifecycle):
            result = auto_approve_projects.handler({}, None)

        assert result == {'autoApproved': 1, 'projectIds': [project_id]}


class TestDecideQcHandler:

    def test_reject_echoes_feedback(self, lifecycle, make_submitted_project):
        project_id = make_submitted_project()
        body = {'decision': 'reject', 'feedback': 'Bibliography missing', 'severity': 'major'}

        with patch.object(decide_qc, 'lifecycle', lifecycle):
            response = decide_qc.handler(api_event('sup-1', 'supervisor', body=body, path={'projectId': project_id}), None)

        payload = body_of(response)
        assert response['statusCode'] == 200
        assert payload['status'] == 'revision_requested'
        assert payload['feedback'] == 'Bibliography missing'
        assert payload['severity'] == 'major'
        assert payload['revisionCount'] == 1

    def test_reject_without_feedback(self, lifecycle, make_submitted_project):
        project_id = make_submitted_project()

        with patch.object(decide_qc, 'lifecycle', lifecycle):
            response = decide_qc.handler(
                api_event('sup-1', 'supervisor', body={'decision': 'reject'}, path={'projectId': project_id}), None
            )

        assert response['statusCode'] == 400

    def test_approve_by_stranger(self, lifecycle, make_submitted_project):
        project_id = make_submitted_project()

        with patch.object(decide_qc, 'lifecycle', lifecycle):
            response = decide_qc.handler(
                api_event('sup-9', 'supervisor', body={'decision': 'approve'}, path={'projectId': project_id}), None
            )

        assert response['statusCode'] == 403


class TestWalletHandlers:

    @pytest.fixture
    def funded(self, ledger):
        ledger.open_wallet('doer-a', Role.DOER)
        ledger.post('doer-a', 4680, TransactionType.PROJECT_EARNING, 'project', 'p-1')
        return 'doer-a'

    def test_payout_shortfall_message(self, payouts, funded):
        with patch.object(request_payout, 'payouts', payouts):
            response = request_payout.handler(api_event('doer-a', 'doer', body={'amount': 5000}), None)

        assert response['statusCode'] == 400
        payload = body_of(response)
        assert payload['message'] == 'Insufficient balance: you need 320 more to withdraw 5000'
        assert payload['shortfall'] == 320

    def test_payout_request_and_confirm(self, payouts, ledger, funded):
        with patch.object(request_payout, 'payouts', payouts), patch.object(confirm_payout, 'payouts', payouts):
            requested = request_payout.handler(api_event('doer-a', 'doer', body={'amount': 1000}), None)
            payout_id = body_of(requested)['payoutId']
            refused = confirm_payout.handler(
                api_event('doer-a', 'doer', body={'externalReference': 'UTR-1'}, path={'payoutId': payout_id}), None
            )
            confirmed = confirm_payout.handler(
                api_event('admin-1', 'admin', body={'externalReference': 'UTR-1'}, path={'payoutId': payout_id}), None
            )

        assert requested['statusCode'] == 201
        assert refused['statusCode'] == 403
        assert confirmed['statusCode'] == 200
        assert body_of(confirmed)['newBalance'] == 3680
        assert ledger.get_wallet(funded)['balance'] == 3680

    def test_payout_marked_failed(self, payouts, funded):
        payout = payouts.request_payout(funded, 1000)

        with patch.object(confirm_payout, 'payouts', payouts):
            response = confirm_payout.handler(
                api_event('admin-1', 'admin', body={'failed': True, 'reason': 'IFSC mismatch'}, path={'payoutId': payout['payoutId']}),
                None
            )

        assert body_of(response)['status'] == 'failed'

    @pytest.mark.parametrize('amount', [None, '1000', 99.5])
    def test_payout_amount_validation(self, payouts, funded, amount):
        body = {} if amount is None else {'amount': amount}
        with patch.object(request_payout, 'payouts', payouts):
            response = request_payout.handler(api_event('doer-a', 'doer', body=body), None)

        assert response['statusCode'] == 400

    def test_get_wallet(self, ledger, payouts, funded):
        payouts.request_payout(funded, 1000)

        with patch.object(get_wallet, 'ledger', ledger), patch.object(get_wallet, 'payouts', payouts):
            response = get_wallet.handler(api_event('doer-a', 'doer', query={'limit': '5'}), None)

        payload = body_of(response)
        assert payload['balance'] == 4680
        assert payload['availableBalance'] == 3680
        assert payload['reserved'] == 1000
        assert payload['transactions'][0]['transactionType'] == 'project_earning'
        assert payload['payouts'][0]['status'] == 'pending'

    @pytest.mark.parametrize('limit', ['0', '-5', 'ten'])
    def test_get_wallet_rejects_bad_limit(self, ledger, payouts, funded, limit):
        with patch.object(get_wallet, 'ledger', ledger), patch.object(get_wallet, 'payouts', payouts):
            response = get_wallet.handler(api_event('doer-a', 'doer', query={'limit': limit}), None)

        assert response['statusCode'] == 400

    def test_get_wallet_before_first_earning(self, ledger, payouts):
        with patch.object(get_wallet, 'ledger', ledger), patch.object(get_wallet, 'payouts', payouts):
            response = get_wallet.handler(api_event('doer-new', 'doer'), None)

        assert response['statusCode'] == 200
        assert body_of(response)['balance'] == 0
