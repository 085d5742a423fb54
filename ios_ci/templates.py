"""Jinja templates for the fastlane and GitHub Actions configuration files.

The environment that renders these uses ``trim_blocks`` and
``lstrip_blocks``, so block tags occupy their own lines without leaving blank
lines behind. GitHub expressions (``${{ ... }}``) are produced by the ``gh``
and ``secret`` globals rather than written literally. Config strings pass
through the ``ruby``, ``yaml`` and ``gh_literal`` filters so that any value
stays a single literal in the generated file.
"""

from __future__ import annotations

__all__ = [
    "APPFILE",
    "FASTFILE",
    "GEMFILE",
    "MATCHFILE",
    "TEMPLATES",
    "WORKFLOW",
]

GEMFILE = """\
source "https://rubygems.org"

gem "fastlane"
"""

APPFILE = """\
app_identifier({{ bundle_id | ruby }})
{% if apple_id %}
apple_id({{ apple_id | ruby }})
{% endif %}
team_id({{ team_id | ruby }})
"""

MATCHFILE = """\
{% if signing_repo %}
git_url(ENV.fetch("MATCH_GIT_URL", {{ signing_repo | ruby }}))
{% else %}
git_url(ENV.fetch("MATCH_GIT_URL"))
{% endif %}
storage_mode("git")
type("appstore")
app_identifier([{{ bundle_id | ruby }}])
team_id({{ team_id | ruby }})
{% if apple_id %}
username({{ apple_id | ruby }})
{% endif %}
readonly(true)
"""

FASTFILE = """\
default_platform(:ios)

platform :ios do
  desc "Run the unit tests"
  lane :test do
    run_tests(
{% if project %}
      project: {{ project | ruby }},
{% endif %}
{% if scheme %}
      scheme: {{ scheme | ruby }},
{% endif %}
      clean: true
    )
  end

  desc "Sign, build and upload a build to TestFlight"
  lane :beta do
    setup_ci if ENV["CI"]

    api_key = app_store_connect_api_key(
      key_id: ENV.fetch("APP_STORE_CONNECT_KEY_ID"),
      issuer_id: ENV.fetch("APP_STORE_CONNECT_ISSUER_ID"),
      key_content: ENV.fetch("APP_STORE_CONNECT_API_KEY"),
      is_key_content_base64: !ENV.fetch("APP_STORE_CONNECT_API_KEY").include?("BEGIN"),
      in_house: {{ "true" if in_house else "false" }}
    )

    match(
      type: "appstore",
      app_identifier: {{ bundle_id | ruby }},
      readonly: true,
      api_key: api_key
    )

    increment_build_number(
{% if project %}
      xcodeproj: {{ project | ruby }},
{% endif %}
      build_number: ENV.fetch("GITHUB_RUN_NUMBER")
    )

    update_code_signing_settings(
      use_automatic_signing: false,
{% if project %}
      path: {{ project | ruby }},
{% endif %}
      team_id: {{ team_id | ruby }},
      bundle_identifier: {{ bundle_id | ruby }},
      code_sign_identity: "Apple Distribution",
      profile_name: {{ profile_name | ruby }}
    )

    build_app(
{% if project %}
      project: {{ project | ruby }},
{% endif %}
{% if scheme %}
      scheme: {{ scheme | ruby }},
{% endif %}
      export_method: "app-store",
      output_directory: {{ build_dir | ruby }},
      output_name: {{ (scheme or "App") | ruby }} +
        "-#{ENV.fetch("GITHUB_RUN_NUMBER")}.ipa"
    )

    upload_to_testflight(
      api_key: api_key,
      skip_waiting_for_build_processing: true
    )

    clean_build_artifacts
  end
end
"""

WORKFLOW = """\
name: {{ workflow_name | yaml }}

on:
  push:
    branches: [{{ default_branch | yaml }}]
  pull_request:
    branches: [{{ default_branch | yaml }}]
  workflow_dispatch:
    inputs:
      lane:
        description: Fastlane lane to run
        required: true
        default: test
        type: choice
        options:
          - test
          - beta

concurrency:
  group: {{ gh("github.workflow") }}-{{ gh("github.ref") }}
  cancel-in-progress: true

jobs:
  test:
    name: Test
    if: >-
      github.event_name == 'pull_request' ||
      (github.event_name == 'workflow_dispatch' && inputs.lane == 'test')
    runs-on: {{ runner | yaml }}
    steps:
      - uses: actions/checkout@v4
      - uses: ruby/setup-ruby@v1
        with:
          bundler-cache: true
      - name: Run tests
        run: bundle exec fastlane test

  deploy:
    name: Deploy
    if: >-
      (github.event_name == 'push' && github.ref == {{ default_ref | gh_literal }}) ||
      (github.event_name == 'workflow_dispatch' && inputs.lane == 'beta')
    runs-on: {{ runner | yaml }}
    steps:
      - uses: actions/checkout@v4
      - uses: webfactory/ssh-agent@v0.9.0
        with:
          ssh-private-key: {{ secret("MATCH_DEPLOY_KEY") }}
      - uses: ruby/setup-ruby@v1
        with:
          bundler-cache: true
      - name: Build and upload to TestFlight
        run: bundle exec fastlane beta
        env:
{% for name in deploy_env %}
          {{ name }}: {{ secret(name) }}
{% endfor %}
"""

TEMPLATES: dict[str, str] = {
    "Gemfile": GEMFILE,
    "fastlane/Appfile": APPFILE,
    "fastlane/Matchfile": MATCHFILE,
    "fastlane/Fastfile": FASTFILE,
    ".github/workflows/ios.yml": WORKFLOW,
}
