import pytest
from pydantic import ValidationError

from bootstrap import compile
from bootstrap.compiler.instruction_compiler import InstructionCompiler
from bootstrap.compiler.instructions import (
    ConfigureInstruction,
    DefineInstruction,
    ExecuteScriptInstruction,
)
from bootstrap.config.compile_options import CompileOptions
from bootstrap.exceptions import CompileError, ConfigParseError, DiscoveryError
from tests.helpers.apps import BROWSER_APP, write_app


@pytest.fixture(autouse=True)
def _no_boot_env(monkeypatch):
    monkeypatch.delenv('BOOT_ENV', raising=False)


def _describe(instruction_set):
    return [instruction.describe() for instruction in instruction_set.instructions]


class TestInstructionOrder:

    def test_fixture_app_compiles_in_domain_precedence(self):
        instruction_set = compile(BROWSER_APP, env='browser')

        assert _describe(instruction_set) == [
            "configure app (5 entries)",
            "configure datasources (1 entries)",
            "define datasource 'db'",
            "configure models (2 entries)",
            "define model 'Customer'",
            "configure middleware (2 entries)",
            "define middleware 'compression'",
            "define middleware 'rest-router'",
            "execute ./boot/10.configure.py",
            "execute ./boot/20.deferred.py",
            "execute ./boot/seed.py",
        ]
        assert instruction_set.env == 'browser'

    def test_overlay_values_reach_the_app_configuration(self):
        instruction_set = compile(BROWSER_APP, env='browser')

        app_config = instruction_set.instructions[0]
        assert isinstance(app_config, ConfigureInstruction)
        assert app_config.entries['custom-key'] == 'custom-value'
        assert app_config.entries['plugins'] == ['rest', 'explorer']
        assert app_config.entries['port'] == 0

    def test_model_definition_carries_its_customization_script(self):
        customer = compile(BROWSER_APP, env='browser').definitions('model')[0]

        assert customer.name == 'Customer'
        assert customer.script is not None
        assert customer.script.specifier == './models/customer.py'

    def test_execute_instructions_follow_all_definitions(self):
        instructions = compile(BROWSER_APP, env='browser').instructions
        kinds = [type(i) for i in instructions]
        first_execute = kinds.index(ExecuteScriptInstruction)

        assert all(k is ExecuteScriptInstruction for k in kinds[first_execute:])
        assert all(k in (ConfigureInstruction, DefineInstruction) for k in kinds[:first_execute])

    def test_middleware_without_phase_defaults_to_routes(self, tmp_path):
        write_app(tmp_path, {'middleware.yaml': 'cors:\n  params:\n    origin: "*"\n'})

        cors = compile(tmp_path).definitions('middleware')[0]

        assert cors.definition == {'params': {'origin': '*'}, 'phase': 'routes'}

    def test_explicit_boot_script_list(self, tmp_path):
        write_app(tmp_path, {'boot/a.py': '', 'boot/b.py': '', 'boot/c.py': ''})

        instruction_set = compile(tmp_path, boot_scripts=['boot/c.py', 'boot/a.py'])

        assert [ref.relative_path for ref in instruction_set.scripts()] == ['boot/c.py', 'boot/a.py']


class TestDeterminism:

    def test_two_compiles_are_byte_identical(self):
        first = compile(BROWSER_APP, env='browser')
        second = compile(BROWSER_APP, env='browser')

        assert first.to_json() == second.to_json()
        assert first == second

    def test_instruction_set_is_immutable(self):
        instruction_set = compile(BROWSER_APP, env='browser')

        with pytest.raises(ValidationError):
            instruction_set.env = 'prod'

    def test_round_trips_through_plain_data(self):
        instruction_set = compile(BROWSER_APP, env='browser')

        restored = type(instruction_set).from_data(instruction_set.to_data())

        assert restored == instruction_set


class TestBoundaries:

    def test_empty_boot_directory_compiles_without_scripts(self, tmp_path):
        write_app(tmp_path, {'config.json': '{"name": "empty"}'})
        (tmp_path / 'boot').mkdir()

        instruction_set = compile(tmp_path)

        assert instruction_set.scripts() == []
        assert len(instruction_set) == 4

    def test_empty_application_root(self, tmp_path):
        instruction_set = compile(tmp_path)

        assert [i.domain for i in instruction_set.instructions] == ['app', 'datasources', 'models', 'middleware']

    def test_reserved_entries_are_not_defined(self, tmp_path):
        write_app(tmp_path, {'models.yaml': '_meta:\n  sources: []\nNote: {}\n'})

        assert [d.name for d in compile(tmp_path).definitions()] == ['Note']


class TestFailures:

    def test_malformed_configuration_fails_with_compile_error(self, tmp_path):
        write_app(tmp_path, {'config.json': '{"name": ', 'boot/1.never.py': 'raise SystemExit'})

        with pytest.raises(CompileError) as exc_info:
            compile(tmp_path)

        assert isinstance(exc_info.value.cause, ConfigParseError)
        assert isinstance(exc_info.value.__cause__, ConfigParseError)
        assert exc_info.value.domain == 'app'
        assert exc_info.value.path.endswith('config.json')

    def test_undecodable_configuration_fails_with_compile_error(self, tmp_path):
        (tmp_path / 'config.json').write_bytes(b'{"name": "\xff\xfe"}')

        with pytest.raises(CompileError) as exc_info:
            compile(tmp_path)

        assert isinstance(exc_info.value.cause, ConfigParseError)
        assert exc_info.value.domain == 'app'

    def test_non_string_model_name_fails_with_compile_error(self, tmp_path):
        write_app(tmp_path, {'models.yaml': '123: {}\n', 'models/note.json': '{}'})

        with pytest.raises(CompileError) as exc_info:
            compile(tmp_path)

        assert isinstance(exc_info.value.cause, ConfigParseError)
        assert exc_info.value.domain == 'models'

    def test_unreadable_boot_directory_fails_with_compile_error(self, tmp_path):
        write_app(tmp_path, {'boot': 'a file, not a directory'})

        with pytest.raises(CompileError) as exc_info:
            compile(tmp_path)

        assert isinstance(exc_info.value.cause, DiscoveryError)

    def test_model_referencing_unknown_datasource(self, tmp_path):
        write_app(tmp_path, {
            'datasources.yaml': 'db: {connector: memory}\n',
            'models.yaml': 'Customer:\n  dataSource: mongo\n',
        })

        with pytest.raises(CompileError, match="dataSource 'mongo' that does not exist") as exc_info:
            compile(tmp_path)

        assert exc_info.value.domain == 'models'

    def test_definition_entry_must_be_a_mapping(self, tmp_path):
        write_app(tmp_path, {'datasources.yaml': 'db: memory\n'})

        with pytest.raises(CompileError, match="datasource 'db' must be a mapping"):
            compile(tmp_path)

    def test_invalid_array_merge_policy_is_rejected(self):
        with pytest.raises(ValueError):
            InstructionCompiler(CompileOptions(array_merge='zip'))
