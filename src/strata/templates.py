"""Scaffold templates for `strata init`."""

from __future__ import annotations

# ---------------------------------------------------------------------------
# project.yml
# ---------------------------------------------------------------------------

PROJECT_YML_TEMPLATE = """\
name: {name}
description: "Order analytics - a strata sample project"

database:
  path: warehouse.duckdb

models_dir: models

state:
  path: target/state.json

build:
  workers: 4
  node_timeout: null        # seconds per model, null = no limit
  continue_on_error: false

contracts:
  default_enforcement: strict

environments:
  dev: {{}}
  prod:
    database:
      path: ${{STRATA_PROD_DB}}
    state:
      path: target/prod-state.json
"""

# ---------------------------------------------------------------------------
# Sample models: staging -> marts
# ---------------------------------------------------------------------------

SAMPLE_STAGING_ORDERS_SQL = """\
-- config: materialized=table
-- tags: staging
-- description: Raw orders with typed columns

SELECT *
FROM (
    VALUES
        (1, 101, 'shipped', 120.50),
        (2, 102, 'pending', 35.00),
        (3, 101, 'delivered', 80.25)
) AS t(order_id, customer_id, status, amount)
"""

SAMPLE_STAGING_CUSTOMERS_SQL = """\
-- config: materialized=table
-- tags: staging
-- description: Customer reference data

SELECT *
FROM (
    VALUES
        (101, 'Ada', 'EU'),
        (102, 'Grace', 'US')
) AS t(customer_id, name, region)
"""

SAMPLE_MARTS_REVENUE_SQL = """\
-- config: materialized=table
-- depends_on: staging.orders, staging.customers
-- tags: finance
-- description: Revenue per region

SELECT
    c.region,
    COUNT(*) AS order_count,
    SUM(o.amount) AS revenue
FROM staging.orders o
JOIN staging.customers c USING (customer_id)
GROUP BY c.region
"""

SAMPLE_SCHEMA_YML = """\
models:
  - name: marts.revenue
    description: Revenue per region
    contract:
      enforcement: strict
      columns:
        - {name: region, data_type: text, nullable: false}
        - {name: order_count, data_type: integer}
        - {name: revenue, data_type: decimal}
"""

SAMPLE_EXPOSURES_YML = """\
exposures:
  - name: revenue_dashboard
    type: dashboard
    owner: finance
    description: Weekly revenue review
    depends_on: [marts.revenue]
"""
