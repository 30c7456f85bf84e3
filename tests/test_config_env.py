import pytest

from p2pwatch.config import REQUIRED_ENV, load_config

OPTIONAL_ENV = (
    'BYBIT_BASE_URL', 'BYBIT_RECV_WINDOW', 'P2P_PAGE_SIZE', 'P2P_MAX_PAGES', 'P2P_POLL_SECS',
    'P2P_HTTP_TIMEOUT_SECS', 'P2P_MONITORING_ENABLED', 'P2P_FINALIZE_ENABLED',
    'P2P_CONFIRMATION_TIMEOUT_SECS', 'TELEGRAM_POLL_TIMEOUT_SECS', 'LOG_LEVEL', 'LOG_FILE',
)


@pytest.fixture
def env(monkeypatch, tmp_path):
    for name in REQUIRED_ENV + OPTIONAL_ENV:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv('TELEGRAM_TOKEN', 'tok')
    monkeypatch.setenv('TELEGRAM_CHAT_ID', '42')
    monkeypatch.setenv('BYBIT_API_KEY', 'key')
    monkeypatch.setenv('BYBIT_API_SECRET', 'secret')
    return monkeypatch, str(tmp_path / 'absent.env')


def test_defaults(env):
    _, dotenv_path = env
    cfg = load_config(dotenv_path)
    assert cfg.monitoring_enabled is False
    assert cfg.finalize_enabled is True
    assert cfg.confirmation_timeout_s is None
    assert cfg.poll_s == 20.0
    assert cfg.page_size == 10
    assert cfg.recv_window_ms == 5000
    assert cfg.bybit_base_url == 'https://api.bybit.com'


def test_overrides_and_bad_numbers(env):
    monkeypatch, dotenv_path = env
    monkeypatch.setenv('P2P_MONITORING_ENABLED', 'yes')
    monkeypatch.setenv('P2P_FINALIZE_ENABLED', '0')
    monkeypatch.setenv('P2P_CONFIRMATION_TIMEOUT_SECS', '900')
    monkeypatch.setenv('P2P_PAGE_SIZE', 'lots')
    monkeypatch.setenv('BYBIT_BASE_URL', 'https://api-testnet.bybit.com/')
    cfg = load_config(dotenv_path)
    assert cfg.monitoring_enabled is True
    assert cfg.finalize_enabled is False
    assert cfg.confirmation_timeout_s == 900.0
    assert cfg.page_size == 10
    assert cfg.bybit_base_url == 'https://api-testnet.bybit.com'


@pytest.mark.parametrize('raw', ['', 'none', '0', '-5', 'soon'])
def test_confirmation_timeout_off_values(env, raw):
    monkeypatch, dotenv_path = env
    monkeypatch.setenv('P2P_CONFIRMATION_TIMEOUT_SECS', raw)
    assert load_config(dotenv_path).confirmation_timeout_s is None


def test_missing_secret_fails(env):
    monkeypatch, dotenv_path = env
    monkeypatch.delenv('BYBIT_API_SECRET')
    with pytest.raises(RuntimeError, match='BYBIT_API_SECRET'):
        load_config(dotenv_path)


def test_dotenv_file_is_read(env, tmp_path):
    monkeypatch, _ = env
    monkeypatch.delenv('TELEGRAM_CHAT_ID')
    path = tmp_path / '.env'
    path.write_text('TELEGRAM_CHAT_ID=777\nP2P_POLL_SECS=5\n')
    cfg = load_config(str(path))
    assert cfg.telegram_chat_id == '777'
    assert cfg.poll_s == 5.0
