"""Service layer: pricing, order numbering, rating aggregation, and the
catalog/order/review/blog/auth workflows built on top of them.

Modules are imported directly (``from storefront.services.order_service
import OrderService``); ``storefront.models`` depends on ``pricing`` so this
package does not import its submodules eagerly.
"""
