import dataclasses

import pytest

from autolb.haproxy_config import (
    ConfigRenderError,
    ConfigSynthesizer,
    ConfigWriteError,
    fingerprint,
    write_config,
)
from autolb.models import Endpoint, PublishKey, ServiceConfiguration, WholeConfiguration


def _whole(**kwargs) -> WholeConfiguration:
    svc = ServiceConfiguration(
        publish=PublishKey(port=80),
        backends=(Endpoint("api-1", "10.0.0.2", 8080), Endpoint("api-2", "10.0.0.3", 8080)),
    )
    base = dict(services=(svc,), stats_port=-1, mode="http")
    base.update(kwargs)
    return WholeConfiguration(**base)


@pytest.fixture
def synth(tmp_path):
    return ConfigSynthesizer(
        pid_file="/run/haproxy.pid",
        sock_file="/run/haproxy.sock",
        template_file=str(tmp_path / "haproxy.tmpl"),
    )


def test_default_template_renders_frontend_and_backends(synth):
    text = synth.render(_whole()).text
    assert "pidfile /run/haproxy.pid" in text
    assert "stats socket /run/haproxy.sock mode 600 expose-fd listeners level user" in text
    assert "frontend port__80" in text
    assert "    bind *:80\n" in text
    assert "default_backend port__80_backends" in text
    assert "balance leastconn" in text
    assert "stick-table type ip size 200k expire 520m" in text
    assert "server api-1_1 10.0.0.2:8080" in text
    assert "server api-2_2 10.0.0.3:8080" in text
    assert text.index("api-1_1") < text.index("api-2_2")


def test_stats_block_only_when_port_configured(synth):
    assert "listen stats" not in synth.render(_whole(stats_port=0)).text
    text = synth.render(_whole(stats_port=1936)).text
    assert "listen stats" in text
    assert "bind *:1936" in text


def test_tls_and_bind_address(synth):
    svc = ServiceConfiguration(
        publish=PublishKey(port=443, bind_address="127.0.0.1", tls_cert_path="/certs/site.pem"),
        backends=(Endpoint("web", "10.0.0.5", 80),),
    )
    text = synth.render(WholeConfiguration(services=(svc,))).text
    assert "frontend port_127.0.0.1_443" in text
    assert "bind 127.0.0.1:443 ssl crt /certs/site.pem\n" in text


def test_tcp_mode(synth):
    text = synth.render(_whole(mode="tcp")).text
    assert "mode                    tcp" in text
    assert "option                  tcplog" in text
    assert "httplog" not in text
    assert "http-response" not in text


def test_empty_configuration_still_renders(synth):
    text = synth.render(WholeConfiguration()).text
    assert "defaults" in text
    assert "frontend" not in text


def test_fingerprint_stable(synth):
    a = synth.render(_whole())
    b = synth.render(_whole())
    assert a.fingerprint == b.fingerprint
    assert a.fingerprint == fingerprint(a.text)


@pytest.mark.parametrize(
    "change",
    [
        lambda e: dataclasses.replace(e, address="10.0.0.99"),
        lambda e: dataclasses.replace(e, port=9090),
        lambda e: dataclasses.replace(e, name="api-9"),
    ],
)
def test_fingerprint_changes_with_backend(synth, change):
    whole = _whole()
    (svc,) = whole.services
    changed = dataclasses.replace(svc, backends=(change(svc.backends[0]), svc.backends[1]))
    assert synth.render(whole).fingerprint != synth.render(_whole(services=(changed,))).fingerprint


@pytest.mark.parametrize(
    "key",
    [PublishKey(port=81), PublishKey(port=80, bind_address="10.0.0.1"), PublishKey(port=80, tls_cert_path="/c.pem")],
)
def test_fingerprint_changes_with_publish_key(synth, key):
    whole = _whole()
    (svc,) = whole.services
    changed = dataclasses.replace(svc, publish=key)
    assert synth.render(whole).fingerprint != synth.render(_whole(services=(changed,))).fingerprint


def test_override_template_used_verbatim(synth, tmp_path):
    (tmp_path / "haproxy.tmpl").write_text(
        "{% for s in services %}{{ s.publish.port }}:{% for b in s.backends %}{{ b.name }},{% endfor %};{% endfor %}"
    )
    assert synth.render(_whole()).text == "80:api-1,api-2,;"


def test_broken_override_template_is_fatal(synth, tmp_path):
    (tmp_path / "haproxy.tmpl").write_text("{% for s in services %}")
    with pytest.raises(ConfigRenderError) as exc:
        synth.render(_whole())
    assert "haproxy.tmpl" in str(exc.value)


def test_undefined_variable_in_template_is_fatal(synth, tmp_path):
    (tmp_path / "haproxy.tmpl").write_text("{{ no_such_thing }}")
    with pytest.raises(ConfigRenderError):
        synth.render(_whole())


def test_write_config_creates_parent(tmp_path):
    target = tmp_path / "etc" / "haproxy" / "haproxy.cfg"
    assert write_config(str(target), "global\n") == len("global\n")
    assert target.read_text() == "global\n"


def test_write_config_failure(tmp_path):
    blocker = tmp_path / "file"
    blocker.write_text("x")
    with pytest.raises(ConfigWriteError):
        write_config(str(blocker / "haproxy.cfg"), "global\n")
