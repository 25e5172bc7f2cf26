"""
End-to-end: compile the fixture app into a bundle, execute the bundle in a
browser-like sandbox and check the application it exports.
"""

import datetime
import logging

import pytest

from bootstrap import compile_instructions, compile_to_bundle
from bootstrap.application import Application
from bootstrap.bundling.bundler import SourceBundler, write_bundle
from bootstrap.core.executor import ServerExecutor
from bootstrap.sandbox.contract import (
    ConsoleLogHandler,
    SandboxContext,
    missing_capabilities,
    missing_host_modules,
)
from tests.helpers.apps import BROWSER_APP, write_app
from tests.helpers.sandbox import create_browser_like_context, execute_bundled_app


@pytest.fixture(autouse=True)
def _no_boot_env(monkeypatch):
    monkeypatch.delenv('BOOT_ENV', raising=False)


def _bundle(app_root, tmp_path, env=None):
    bundler = SourceBundler()
    compile_to_bundle(app_root, bundler, env=env)
    return write_bundle(bundler, tmp_path / 'browser-app.bundle.py')


def _logged(context, channel='log'):
    return [' '.join(str(a) for a in args) for args in context.console._logs[channel]]


class TestBrowserBundle:

    def test_bundled_app_has_configuration_and_customizations(self, tmp_path):
        app = execute_bundled_app(_bundle(BROWSER_APP, tmp_path, env='browser'))

        assert app.settings['custom-key'] == 'custom-value'
        assert app.models.Customer.settings['_customized'] == 'Customer'
        assert app.models['Customer'].data_source.name == 'db'

    def test_bundled_app_runs_as_browser(self, tmp_path):
        app = execute_bundled_app(_bundle(BROWSER_APP, tmp_path, env='browser'))

        assert app.runtime == 'browser'
        assert app.settings['runtime'] == 'browser'
        assert app.settings['boot-order'] == ['configure', 'deferred', 'seed']
        assert not app.booting

    def test_boot_suspends_until_sandbox_timers_run(self, tmp_path):
        context = create_browser_like_context()
        namespace = context.as_globals()
        code = _bundle(BROWSER_APP, tmp_path, env='browser').read_text(encoding='utf-8')
        exec(compile(code, '<bundle>', 'exec'), namespace)

        app = eval("require('browser-app')", namespace)

        assert app.booting
        assert app.settings['boot-order'] == ['configure']
        assert context.pending_timers == 1

        context.run_timers()

        assert app.settings['boot-order'] == ['configure', 'deferred', 'seed']
        assert not app.booting

    def test_same_state_as_server_boot(self, tmp_path):
        server_app = Application()
        ServerExecutor().execute(compile_instructions(BROWSER_APP, env='browser'), server_app, timeout=10)

        browser_app = execute_bundled_app(_bundle(BROWSER_APP, tmp_path, env='browser'))

        def _without_runtime(settings):
            return {k: v for k, v in settings.items() if k != 'runtime'}

        assert _without_runtime(browser_app.settings) == _without_runtime(server_app.settings)
        assert browser_app.config == server_app.config
        assert browser_app.middleware_entries == server_app.middleware_entries
        assert list(browser_app.models) == list(server_app.models)
        for name, model in server_app.models.items():
            assert browser_app.models[name].settings == model.settings
            assert browser_app.models[name].properties == model.properties

    def test_yaml_native_values_match_server_boot(self, tmp_path):
        app_root = write_app(tmp_path / 'app', {
            'config.yaml': 'released: 2024-01-01\nports:\n  80: http\n  443: https\n',
        })
        server_app = Application()
        ServerExecutor().execute(compile_instructions(app_root), server_app, timeout=10)

        browser_app = execute_bundled_app(_bundle(app_root, tmp_path))

        assert browser_app.settings['released'] == datetime.date(2024, 1, 1)
        assert browser_app.settings['ports'] == {80: 'http', 443: 'https'}
        assert browser_app.settings == server_app.settings

    def test_host_logging_is_left_untouched(self, tmp_path):
        host_logger = logging.getLogger('bootstrap')
        level_before = host_logger.level
        context = create_browser_like_context(debug='bootstrap')
        namespace = context.as_globals()
        exec(compile(_bundle(BROWSER_APP, tmp_path).read_text(encoding='utf-8'), '<bundle>', 'exec'), namespace)

        app = eval("require('browser-app')", namespace)

        assert app.booting
        assert host_logger.level == level_before
        assert not any(isinstance(h, ConsoleLogHandler) for h in host_logger.handlers)
        assert any('Executing' in m for m in _logged(context))

    def test_boot_logs_go_to_sandbox_console(self, tmp_path):
        context = create_browser_like_context()

        execute_bundled_app(_bundle(BROWSER_APP, tmp_path), context=context)

        messages = _logged(context)
        assert any('Executing' in m for m in messages)
        assert any('Boot Execution Summary' in m for m in messages)
        assert not any('✓ Instruction #' in m for m in messages)
        assert _logged(context, 'error') == []

    def test_debug_flag_enables_verbose_logs(self, tmp_path):
        context = create_browser_like_context(debug='bootstrap')

        execute_bundled_app(_bundle(BROWSER_APP, tmp_path), context=context)

        assert any('✓ Instruction #0' in m for m in _logged(context))


class TestSandboxFailures:

    def test_helper_context_satisfies_contract(self):
        context = create_browser_like_context()

        assert isinstance(context, SandboxContext)
        assert missing_capabilities(context.as_globals()) == []

    def test_host_module_check(self):
        assert missing_host_modules() == []
        assert missing_host_modules(('pydantic', 'no_such_host_package')) == ['no_such_host_package']

    def test_missing_capability(self, tmp_path):
        namespace = create_browser_like_context().as_globals()
        del namespace['set_timeout']
        exec(compile(_bundle(BROWSER_APP, tmp_path).read_text(encoding='utf-8'), '<bundle>', 'exec'), namespace)

        with pytest.raises(RuntimeError, match='set_timeout'):
            eval("require('browser-app')", namespace)

    def test_failing_boot_script_surfaces_execution_error(self, tmp_path):
        app_root = write_app(tmp_path / 'app', {
            'config.json': '{"name": "failing"}',
            'boot/1.fail.py': "def boot(app):\n    raise ValueError('cannot seed')\n",
        })
        context = create_browser_like_context()

        with pytest.raises(Exception) as exc_info:
            execute_bundled_app(_bundle(app_root, tmp_path), context=context)

        assert type(exc_info.value).__name__ == 'ExecutionError'
        assert isinstance(exc_info.value.cause, ValueError)
        assert any('cannot seed' in m for m in _logged(context, 'error'))

    def test_each_execution_gets_a_fresh_app(self, tmp_path):
        bundle_path = _bundle(BROWSER_APP, tmp_path)

        first = execute_bundled_app(bundle_path)
        second = execute_bundled_app(bundle_path)

        assert first is not second
        assert first.settings == second.settings
