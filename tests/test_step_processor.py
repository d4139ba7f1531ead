"""
Tests for step executors
"""

import logging

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from apiflow.flow_engine.errors import RequestExecutionError
from apiflow.flow_engine.models import (
    ConditionStep,
    DelayStep,
    ExtractionRule,
    Flow,
    LogStep,
    RequestStep,
    StepType,
)
from apiflow.flow_engine.step_processor import (
    ConditionStepExecutor,
    DelayStepExecutor,
    ExecutionContext,
    LogStepExecutor,
    RequestStepExecutor,
    default_executors,
    default_log_sink,
)
from apiflow.services import HttpClient, HttpRequest, HttpResponse, HttpStatusError, NetworkError


@pytest.fixture
def make_context(variable_store, http_client, endpoint_catalog, history, log_sink):
    def factory(bindings=None, **overrides):
        values = dict(
            flow_id='f1',
            bindings=bindings or {},
            variable_store=variable_store,
            http_client=http_client,
            endpoint_catalog=endpoint_catalog,
            history=history,
            log_sink=log_sink,
        )
        values.update(overrides)
        return ExecutionContext(**values)
    return factory


class TestRequestStepExecutor:
    """Test request steps"""

    @pytest.mark.asyncio
    async def test_extracts_variables(self, make_context, variable_store, history):
        """Extraction rules copy response values into the store"""
        step = RequestStep(id='s1', name='health', url='/health',
                           extract_variables=[ExtractionRule(name='ok', path='status')])

        outcome = await RequestStepExecutor().execute(step, make_context())

        assert variable_store.get('ok') == 'up'
        assert outcome.output['status'] == 200
        assert outcome.output['extracted'] == {'ok': 'up'}
        assert len(history) == 1
        assert history.entries()[0].request['url'] == '/health'

    @pytest.mark.asyncio
    async def test_interpolates_request(self, make_context, http_client):
        step = RequestStep(
            id='s1', name='create', method='post', url='/users/${userId}',
            headers={'Authorization': 'Bearer ${token}'},
            params={'q': '{{query}}'},
            body={'name': '${name}', 'tags': ['${tag}'], 'count': 2},
        )
        bindings = {'userId': 7, 'token': 'abc', 'query': 'x', 'name': 'Ana', 'tag': 't1'}

        await RequestStepExecutor().execute(step, make_context(bindings))

        sent = http_client.execute.call_args.args[0]
        assert sent == HttpRequest(
            method='POST',
            url='/users/7',
            headers={'Authorization': 'Bearer abc'},
            params={'q': 'x'},
            body={'name': 'Ana', 'tags': ['t1'], 'count': 2},
        )

    @pytest.mark.asyncio
    async def test_catalog_merge(self, make_context, http_client):
        """Catalog fields are the base, step fields override, headers merge"""
        step = RequestStep(id='s1', name='me', endpoint_id='users.me',
                           headers={'X-Client': 'step', 'X-Extra': '1'})

        await RequestStepExecutor().execute(step, make_context())

        sent = http_client.execute.call_args.args[0]
        assert sent.method == 'GET'
        assert sent.url == '/users/me'
        assert sent.headers == {'Accept': 'application/json', 'X-Client': 'step', 'X-Extra': '1'}

    @pytest.mark.asyncio
    async def test_catalog_body_interpolated(self, make_context, http_client):
        step = RequestStep(id='s1', name='login', endpoint_id='auth.login')

        await RequestStepExecutor().execute(step, make_context({'email': 'a@b.c', 'password': 'pw'}))

        sent = http_client.execute.call_args.args[0]
        assert sent.method == 'POST'
        assert sent.body == {'email': 'a@b.c', 'password': 'pw'}

    @pytest.mark.asyncio
    async def test_async_catalog(self, make_context, http_client):
        catalog = MagicMock()
        catalog.resolve = AsyncMock(return_value={'method': 'DELETE', 'path': '/items/1'})
        step = RequestStep(id='s1', name='delete', endpoint_id='items.delete')

        await RequestStepExecutor().execute(step, make_context(endpoint_catalog=catalog))

        assert http_client.execute.call_args.args[0].method == 'DELETE'

    @pytest.mark.asyncio
    async def test_unknown_endpoint(self, make_context, http_client):
        step = RequestStep(id='s1', name='x', endpoint_id='nope')

        with pytest.raises(RequestExecutionError, match='Endpoint not found: nope'):
            await RequestStepExecutor().execute(step, make_context())
        http_client.execute.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_url(self, make_context):
        with pytest.raises(RequestExecutionError, match='no URL'):
            await RequestStepExecutor().execute(RequestStep(id='s1', name='x'), make_context())

    @pytest.mark.asyncio
    async def test_network_error(self, make_context, http_client, history):
        cause = NetworkError('Network error: connection refused')
        http_client.execute.side_effect = cause
        step = RequestStep(id='s1', name='x', url='/health')

        with pytest.raises(RequestExecutionError) as exc_info:
            await RequestStepExecutor().execute(step, make_context())

        assert exc_info.value.cause is cause
        assert exc_info.value.step_id == 's1'
        assert exc_info.value.request.url == '/health'
        assert history.entries()[0].error == 'Network error: connection refused'

    @pytest.mark.asyncio
    async def test_unexpected_client_error(self, make_context, http_client, history):
        """Errors outside the client's own hierarchy still become request errors"""
        cause = ConnectionResetError('reset by peer')
        http_client.execute.side_effect = cause
        step = RequestStep(id='s1', name='x', url='/health')

        with pytest.raises(RequestExecutionError, match='reset by peer') as exc_info:
            await RequestStepExecutor().execute(step, make_context())

        assert exc_info.value.cause is cause
        assert exc_info.value.request.url == '/health'
        assert history.entries()[0].error == 'reset by peer'

    @pytest.mark.asyncio
    async def test_header_values_sent_as_text(self, make_context, http_client):
        step = RequestStep(id='s1', name='x', url='/health',
                           headers={'X-Count': 3, 'X-Flag': True, 'X-User': '${user}'})

        await RequestStepExecutor().execute(step, make_context({'user': 'ana'}))

        sent = http_client.execute.call_args.args[0]
        assert sent.headers == {'X-Count': '3', 'X-Flag': 'true', 'X-User': 'ana'}

    @pytest.mark.asyncio
    async def test_numeric_headers_from_definition(self, make_context, json_transport, history):
        """Header values parsed from flow JSON reach a real client as strings"""
        flow = Flow.from_dict({'id': 'f', 'name': 'f', 'steps': [
            {'id': 's1', 'type': 'request', 'name': 'x', 'method': 'GET', 'url': '/health',
             'headers': {'X-Count': 3}},
        ]})
        client = HttpClient(base_url='http://api.test', transport=json_transport({
            ('GET', '/health'): (200, {'status': 'up'}),
        }))

        outcome = await RequestStepExecutor().execute(flow.steps[0], make_context(http_client=client))

        assert outcome.output['status'] == 200
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_error_status(self, make_context, http_client, history):
        request = HttpRequest('GET', '/health')
        response = HttpResponse(status=500, status_text='Internal Server Error', body={'error': 'boom'})
        http_client.execute.side_effect = HttpStatusError(request, response)
        step = RequestStep(id='s1', name='x', url='/health')

        with pytest.raises(RequestExecutionError) as exc_info:
            await RequestStepExecutor().execute(step, make_context())

        assert exc_info.value.status == 500
        assert history.entries()[0].response['status'] == 500

    @pytest.mark.asyncio
    async def test_history_failure_does_not_fail_step(self, make_context):
        history = MagicMock()
        history.record.side_effect = RuntimeError('disk full')
        step = RequestStep(id='s1', name='x', url='/health')

        outcome = await RequestStepExecutor().execute(step, make_context(history=history))

        assert outcome.output['status'] == 200

    @pytest.mark.asyncio
    async def test_extraction_failures_do_not_fail_step(self, make_context, variable_store, caplog):
        step = RequestStep(id='s1', name='x', url='/health', extract_variables=[
            ExtractionRule(name='missing', path='data.token'),
            ExtractionRule(name='broken', path='status..x'),
            ExtractionRule(name='ok', path='$.status'),
        ])

        with caplog.at_level(logging.WARNING):
            outcome = await RequestStepExecutor().execute(step, make_context())

        assert outcome.output['extracted'] == {'ok': 'up'}
        assert 'missing' not in variable_store
        assert 'broken' not in variable_store
        assert 'Variable extraction failed for broken' in caplog.text


class TestDelayStepExecutor:

    @pytest.mark.asyncio
    async def test_waits_for_delay(self, make_context):
        with patch('apiflow.flow_engine.step_processor.asyncio.sleep', new_callable=AsyncMock) as sleep:
            outcome = await DelayStepExecutor().execute(DelayStep(id='d', name='d', delay_ms=250), make_context())

        sleep.assert_awaited_once_with(0.25)
        assert outcome.output == {'delay_ms': 250}

    @pytest.mark.asyncio
    async def test_default_delay(self, make_context):
        with patch('apiflow.flow_engine.step_processor.asyncio.sleep', new_callable=AsyncMock) as sleep:
            await DelayStepExecutor().execute(DelayStep(id='d', name='d'), make_context())
            await DelayStepExecutor(default_delay_ms=20).execute(DelayStep(id='d', name='d'), make_context())

        assert [c.args[0] for c in sleep.await_args_list] == [1.0, 0.02]


class TestConditionStepExecutor:

    @pytest.mark.asyncio
    async def test_result(self, make_context):
        executor = ConditionStepExecutor()

        true_outcome = await executor.execute(ConditionStep(id='c', name='c', condition='a > 1'), make_context({'a': 2}))
        false_outcome = await executor.execute(ConditionStep(id='c', name='c', condition='a > 1'), make_context({'a': 0}))
        empty_outcome = await executor.execute(ConditionStep(id='c', name='c'), make_context())

        assert true_outcome.output == {'result': True}
        assert false_outcome.output == {'result': False}
        assert empty_outcome.output == {'result': True}

    @pytest.mark.asyncio
    async def test_malformed_condition_is_false(self, make_context):
        outcome = await ConditionStepExecutor().execute(
            ConditionStep(id='c', name='c', condition='a >'), make_context({'a': 1})
        )

        assert outcome.output == {'result': False}

    @pytest.mark.asyncio
    async def test_result_variable(self, make_context, variable_store):
        step = ConditionStep(id='c', name='c', condition='token', result_variable='hasToken')

        await ConditionStepExecutor().execute(step, make_context({'token': ''}))

        assert variable_store.get('hasToken') is False


class TestLogStepExecutor:

    @pytest.mark.asyncio
    async def test_interpolates_message(self, make_context, log_sink):
        step = LogStep(id='l', name='l', message='hello ${user}')

        outcome = await LogStepExecutor().execute(step, make_context({'user': 'ana'}))

        assert log_sink.messages == [('info', 'hello ana')]
        assert outcome.output == {'level': 'info', 'message': 'hello ana'}

    def test_default_sink_levels(self, caplog):
        with caplog.at_level(logging.DEBUG, logger='apiflow.flow_log'):
            default_log_sink('warn', 'careful')
            default_log_sink('debug', 'details')

        levels = [(r.levelno, r.getMessage()) for r in caplog.records if r.name == 'apiflow.flow_log']
        assert levels == [(logging.WARNING, 'careful'), (logging.DEBUG, 'details')]


class TestRegistry:

    def test_default_executors(self):
        executors = default_executors()

        assert set(executors) == set(StepType)
        assert isinstance(executors[StepType.REQUEST], RequestStepExecutor)
        assert executors[StepType.DELAY].default_delay_ms == 1000
