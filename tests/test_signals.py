from tabgrouper.signals import PageSignals, pick_smart_name

NOISE = ["login", "dashboard", "inbox"]


def test_camel_case_payload():
    s = PageSignals.model_validate({"siteName": "Acme", "manifestName": "Acme App", "unknown": 1})
    assert s.site_name == "Acme"
    assert s.manifest_name == "Acme App"


def test_priority_order():
    s = PageSignals(page_title="Some article", site_name="The Site", app_title="Site App", heading="Site")
    assert pick_smart_name(s, hostname="site.com") == "Site App"
    s = PageSignals(page_title="Some   article", structured_name=" ")
    assert pick_smart_name(s, hostname="site.com") == "Some article"


def test_heading_needs_domain_core():
    s = PageSignals(heading="Welcome to Notion", title="Untitled")
    assert pick_smart_name(s, hostname="www.notion.so") == "Welcome to Notion"
    s = PageSignals(heading="Getting started")
    assert pick_smart_name(s, hostname="www.notion.so") is None


def test_title_fallback_is_sanitized():
    s = PageSignals(heading="Dashboard", title="Notion – Workspace")
    assert pick_smart_name(s, hostname="www.notion.so", noise_words=NOISE) == "Notion"
    s = PageSignals(title="Login | Grafana Cloud")
    assert pick_smart_name(s, hostname="grafana.net", noise_words=NOISE) == "Grafana Cloud"


def test_raw_title_used_when_payload_has_none():
    assert pick_smart_name(PageSignals(), hostname="linear.app", raw_title="Linear - Issues") == "Linear"
    assert pick_smart_name(PageSignals(), hostname="linear.app", raw_title="Issues") is None
