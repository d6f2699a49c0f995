import os
import unittest

from mock import patch
from testfixtures import TempDirectory

from shipfish.config.config import Config
from shipfish.exceptions import ConfigProcessingFailed, NoSuchConfigSection, NoSuchConfigSectionItem


CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
CONFIG_YML = os.path.join(CURRENT_DIR, 'interpolate.yml')
ENV_FILE = os.path.join(CURRENT_DIR, 'env_file.env')
ITEM_ENV_FILE = os.path.join(CURRENT_DIR, 'item_env_file.env')


def environment(target):
    return {e['name']: e['value'] for e in target['task_definition_config']['container_definitions'][0]['environment']}


class TestConfig_load_yaml(unittest.TestCase):

    def setUp(self):
        self.config = Config.new(filename=CONFIG_YML, env_file=ENV_FILE)

    def test_simple_interpolation(self):
        self.assertEqual(environment(self.config.get_target('web-prod'))['DB_HOST'], 'db.example.com')

    def test_replacements_in_variable_names(self):
        self.assertEqual(environment(self.config.get_target('web-prod'))['SECRET_KEY'], ')(#jlk329!!3$3093%%.__)')
        self.assertEqual(environment(self.config.get_target('web-test'))['SECRET_KEY'], 'not-so-secret')
        self.assertEqual(environment(self.config.get_target('web-prod'))['CLUSTER'], 'prod-label')

    def test_several_variables_in_one_value(self):
        self.assertEqual(environment(self.config.get_target('web-prod'))['DB_URL'], 'mysql://web@db.example.com/web')

    def test_raw_is_not_interpolated(self):
        raw = self.config.raw['targets'][0]
        self.assertEqual(environment(raw)['DB_HOST'], '${env.DB_HOST}')

    def test_lookup_by_environment(self):
        self.assertEqual(self.config.get_target('test')['name'], 'web-test')

    def test_no_such_target(self):
        with self.assertRaises(NoSuchConfigSectionItem):
            self.config.get_target('web-qa')

    def test_no_such_section(self):
        with self.assertRaises(NoSuchConfigSection):
            self.config.get_section('tunnels')

    def test_settings(self):
        self.assertEqual(self.config.settings['timeout'], 300)
        self.assertEqual(len(self.config.targets), 2)


class TestConfig_load_yaml_no_interpolate(unittest.TestCase):

    def test_values_are_left_alone(self):
        config = Config.new(filename=CONFIG_YML, interpolate=False)
        self.assertEqual(environment(config.get_target('web-prod'))['DB_HOST'], '${env.DB_HOST}')


class TestConfig_missing_environment(unittest.TestCase):

    def test_missing_variable_fails(self):
        with self.assertRaises(ConfigProcessingFailed) as cm:
            Config.new(filename=CONFIG_YML)
        self.assertIn('${env.DB_HOST}', str(cm.exception))

    def test_ignore_missing_environment(self):
        config = Config.new(filename=CONFIG_YML, ignore_missing_environment=True)
        self.assertEqual(environment(config.get_target('web-prod'))['DB_HOST'], 'NOT-IN-ENVIRONMENT')

    def test_missing_env_file(self):
        with self.assertRaises(ConfigProcessingFailed):
            Config.new(filename=CONFIG_YML, env_file=os.path.join(CURRENT_DIR, 'nope.env'))

    def test_import_env(self):
        with patch.dict(os.environ, {'DB_HOST': 'env-db.example.com'}):
            config = Config.new(filename=CONFIG_YML, import_env=True, ignore_missing_environment=True)
        self.assertEqual(environment(config.get_target('web-prod'))['DB_HOST'], 'env-db.example.com')

    def test_env_file_wins_over_process_environment(self):
        with patch.dict(os.environ, {'DB_USER': 'root'}):
            config = Config.new(filename=CONFIG_YML, env_file=ENV_FILE, import_env=True)
        self.assertEqual(environment(config.get_target('web-prod'))['DB_URL'], 'mysql://web@db.example.com/web')


class TestConfig_item_env_file(unittest.TestCase):

    def test_item_env_file_wins(self):
        raw = {
            'targets': [
                {
                    'name': 'web-prod',
                    'cluster': 'prod',
                    'env_file': ITEM_ENV_FILE,
                    'service_config': {'placement': '${env.DB_HOST}', 'user': '${env.DB_USER}'},
                }
            ]
        }
        config = Config.new(raw_config=raw, env_file=ENV_FILE)
        service_config = config.get_target('web-prod')['service_config']
        self.assertEqual(service_config['placement'], 'item-db.example.com')
        self.assertEqual(service_config['user'], 'web')


class TestConfig_bad_files(unittest.TestCase):

    def test_no_such_file(self):
        with self.assertRaises(ConfigProcessingFailed):
            Config.new(filename=os.path.join(CURRENT_DIR, 'nope.yml'))

    def test_invalid_yaml(self):
        with TempDirectory() as d:
            path = d.write('shipfish.yml', b'targets: [\n')
            with self.assertRaises(ConfigProcessingFailed):
                Config.new(filename=path)

    def test_not_a_mapping(self):
        with TempDirectory() as d:
            path = d.write('shipfish.yml', b'- just\n- a list\n')
            with self.assertRaises(ConfigProcessingFailed):
                Config.new(filename=path)
