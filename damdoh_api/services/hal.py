# -*- coding: utf-8 -*-
# SPDX-License-Identifier: Apache-2.0

"""
HAL+JSON rendering for DamDoh resources.

Every response carries `_links`. Affordance links (order, approve, mark_read)
appear only when the caller may take that action on the resource in its
current state, so clients can drive the UI from links alone.
"""

from typing import Dict, List, Any, Iterable, Optional
from urllib.parse import urljoin, urlencode
import math

from ..models.responses import HalLink

ORDER_ACTIONS = {
    "CONFIRMED": ("confirm", "Confirm order"),
    "PAID": ("mark-paid", "Mark order as paid"),
    "SHIPPED": ("ship", "Mark order as shipped"),
    "DELIVERED": ("mark-delivered", "Mark order as delivered"),
    "CANCELLED": ("cancel", "Cancel order"),
}


def _dump_links(links: Dict[str, HalLink]) -> Dict[str, Dict[str, Any]]:
    return {rel: link.model_dump(exclude_none=True) for rel, link in links.items()}


class HalLinkBuilder:
    """Absolute links rooted at the public base URL."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/') + '/'

    def build_link(
        self,
        path: str,
        method: str = "GET",
        content_type: Optional[str] = None,
        title: Optional[str] = None,
        templated: Optional[bool] = None
    ) -> HalLink:
        href = urljoin(self.base_url, path.lstrip('/'))

        return HalLink(
            href=href,
            method=method,
            type=content_type,
            title=title,
            templated=templated
        )

    def build_self_link(self, resource_path: str) -> HalLink:
        return self.build_link(resource_path, title="Self")

    def build_collection_link(self, collection_path: str) -> HalLink:
        return self.build_link(collection_path, title="Collection")

    def build_action_link(
        self,
        resource_path: str,
        action: str,
        method: str = "POST",
        title: Optional[str] = None
    ) -> HalLink:
        """JSON-bodied action on a sub-path of the resource."""
        action_path = f"{resource_path}/{action}" if action else resource_path
        return self.build_link(
            action_path,
            method=method,
            content_type="application/json",
            title=title or action.title()
        )


class PaginationLinkBuilder:
    """first/prev/next/last links that keep the active filters in the query string."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def _page_link(self, base_path: str, params: Dict[str, Any], page: int,
                   page_size: int, title: str) -> HalLink:
        query = urlencode({**params, 'page': page, 'pageSize': page_size})
        return self.link_builder.build_link(f"{base_path}?{query}", title=title)

    def build_pagination_links(
        self,
        base_path: str,
        current_page: int,
        total_pages: int,
        page_size: int,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build pagination links for a page-numbered collection."""
        params = {k: v for k, v in (query_params or {}).items() if v is not None}
        links = {'self': self._page_link(base_path, params, current_page, page_size, "Current page")}

        if current_page > 1:
            links['first'] = self._page_link(base_path, params, 1, page_size, "First page")
            links['prev'] = self._page_link(base_path, params, current_page - 1, page_size, "Previous page")

        if current_page < total_pages:
            links['next'] = self._page_link(base_path, params, current_page + 1, page_size, "Next page")
            links['last'] = self._page_link(base_path, params, total_pages, page_size, "Last page")

        return links

    def build_cursor_links(
        self,
        base_path: str,
        after: Optional[str],
        next_cursor: Optional[str],
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, HalLink]:
        """Build self/next links for a cursor-paginated collection."""
        params = {k: v for k, v in (query_params or {}).items() if v is not None}

        self_params = {**params, 'after': after} if after else params
        self_path = f"{base_path}?{urlencode(self_params)}" if self_params else base_path
        links = {'self': self.link_builder.build_link(self_path, title="Current page")}

        if next_cursor:
            links['next'] = self.link_builder.build_link(
                f"{base_path}?{urlencode({**params, 'after': next_cursor})}",
                title="Next page"
            )

        return links


class AffordanceLinkBuilder:
    """Per-resource links that depend on ownership, role and state."""

    def __init__(self, base_url: str):
        self.link_builder = HalLinkBuilder(base_url)

    def build_farm_affordances(self, farm_id: str) -> Dict[str, HalLink]:
        """Farms are only ever rendered for their owner."""
        base_path = f"/api/farms/{farm_id}"
        return {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/farms"),
            'edit': self.link_builder.build_link(
                base_path, method="PUT", content_type="application/json", title="Edit farm"
            ),
            'delete': self.link_builder.build_link(base_path, method="DELETE", title="Delete farm"),
            'crops': self.link_builder.build_link(f"{base_path}/crops", title="Farm crops"),
            'add_crop': self.link_builder.build_action_link(base_path, "crops", title="Add crop"),
        }

    def build_listing_affordances(
        self,
        listing_id: str,
        listing: Dict[str, Any],
        current_user_id: Optional[str]
    ) -> Dict[str, HalLink]:
        """Build conditional affordance links for marketplace listings."""
        base_path = f"/api/marketplace/listings/{listing_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/marketplace/listings"),
            'seller': self.link_builder.build_link(
                f"/api/profiles/{listing.get('sellerId')}", title="Seller profile"
            ),
        }

        is_seller = listing.get('sellerId') == current_user_id
        if (listing.get('status') == "ACTIVE" and not is_seller
                and listing.get('availableQuantity', 0) > 0):
            links['order'] = self.link_builder.build_link(
                "/api/marketplace/orders",
                method="POST",
                content_type="application/json",
                title="Order this listing"
            )

        if listing.get('relatedTraceabilityId'):
            links['traceability'] = self.link_builder.build_link(
                f"/api/traceability/vtis/{listing['relatedTraceabilityId']}",
                title="Traceability history"
            )

        return links

    def build_order_affordances(
        self,
        order_id: str,
        allowed_statuses: Iterable[str]
    ) -> Dict[str, HalLink]:
        """Build one status-change link per transition the caller may perform."""
        base_path = f"/api/marketplace/orders/{order_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/marketplace/orders"),
        }

        for status in allowed_statuses:
            rel, title = ORDER_ACTIONS[status]
            links[rel] = self.link_builder.build_action_link(base_path, "status", method="PATCH", title=title)

        return links

    def build_application_affordances(
        self,
        application_id: str,
        status: str,
        is_reviewer: bool
    ) -> Dict[str, HalLink]:
        """Build conditional affordance links for financial applications."""
        base_path = f"/api/financial/applications/{application_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/financial/applications"),
        }

        if is_reviewer and status in ("PENDING", "MORE_INFO_REQUIRED"):
            links['approve'] = self.link_builder.build_action_link(
                base_path, "status", method="PATCH", title="Approve application"
            )
            links['reject'] = self.link_builder.build_action_link(
                base_path, "status", method="PATCH", title="Reject application"
            )
            if status == "PENDING":
                links['request_info'] = self.link_builder.build_action_link(
                    base_path, "status", method="PATCH", title="Request more information"
                )

        return links

    def build_claim_affordances(
        self,
        claim_id: str,
        status: str,
        is_insurer: bool
    ) -> Dict[str, HalLink]:
        """Build conditional affordance links for insurance claims."""
        base_path = f"/api/insurance/claims/{claim_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/insurance/claims"),
        }

        if is_insurer and status == "PENDING":
            links['approve'] = self.link_builder.build_action_link(
                base_path, "status", method="PATCH", title="Approve claim"
            )
            links['reject'] = self.link_builder.build_action_link(
                base_path, "status", method="PATCH", title="Reject claim"
            )

        return links

    def build_post_affordances(self, post_id: str, topic_id: str) -> Dict[str, HalLink]:
        """Build links for a forum post."""
        replies_path = f"/api/forums/posts/{post_id}/replies"
        return {
            'self': self.link_builder.build_self_link(replies_path),
            'topic': self.link_builder.build_link(f"/api/forums/topics/{topic_id}/posts", title="Topic posts"),
            'reply': self.link_builder.build_link(
                replies_path, method="POST", content_type="application/json", title="Reply"
            ),
        }

    def build_notification_affordances(self, notification_id: str, status: str) -> Dict[str, HalLink]:
        base_path = f"/api/notifications/{notification_id}"
        links = {
            'self': self.link_builder.build_self_link(base_path),
            'collection': self.link_builder.build_collection_link("/api/notifications"),
        }

        if status == "UNREAD":
            links['mark_read'] = self.link_builder.build_action_link(
                base_path, "read", method="PATCH", title="Mark as read"
            )

        return links


class HalResponseBuilder:
    """Wraps payloads into resource, collection and problem documents."""

    def __init__(self, base_url: str):
        self.base_url = base_url.rstrip('/')
        self.link_builder = HalLinkBuilder(base_url)
        self.pagination_builder = PaginationLinkBuilder(base_url)
        self.affordance_builder = AffordanceLinkBuilder(base_url)

    def build_resource_response(
        self,
        data: Dict[str, Any],
        self_path: Optional[str] = None,
        links: Optional[Dict[str, HalLink]] = None
    ) -> Dict[str, Any]:
        """Build a HAL resource response; explicit links win over the generated self link."""
        response = dict(data)
        all_links: Dict[str, HalLink] = {}

        if self_path:
            all_links['self'] = self.link_builder.build_self_link(self_path)
        if links:
            all_links.update(links)

        response['_links'] = _dump_links(all_links)
        return response

    def build_collection_response(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        total_pages = math.ceil(total / page_size) if page_size > 0 else 1

        pagination_links = self.pagination_builder.build_pagination_links(
            collection_path,
            page,
            total_pages,
            page_size,
            query_params
        )

        return {
            'total': total,
            'page': page,
            'page_size': page_size,
            'total_pages': total_pages,
            '_links': _dump_links(pagination_links),
            '_embedded': {
                'items': items
            }
        }

    def build_cursor_collection_response(
        self,
        items: List[Dict[str, Any]],
        collection_path: str,
        after: Optional[str],
        next_cursor: Optional[str],
        query_params: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """Build a HAL collection response for cursor pagination."""
        links = self.pagination_builder.build_cursor_links(
            collection_path, after, next_cursor, query_params
        )

        return {
            'count': len(items),
            'nextCursor': next_cursor,
            '_links': _dump_links(links),
            '_embedded': {
                'items': items
            }
        }

    def build_list_response(
        self,
        items: List[Dict[str, Any]],
        collection_path: str
    ) -> Dict[str, Any]:
        """Build an unpaginated HAL collection."""
        return {
            'count': len(items),
            '_links': _dump_links({'self': self.link_builder.build_self_link(collection_path)}),
            '_embedded': {
                'items': items
            }
        }

    def build_error_response(
        self,
        error_type: str,
        title: str,
        status: int,
        detail: str,
        instance: str,
        validation_errors: Optional[List[Dict[str, Any]]] = None
    ) -> Dict[str, Any]:
        """RFC 7807 problem document; validation errors go under `errors`."""
        error_response = {
            'type': f"https://api.damdoh.org/problems/{error_type}",
            'title': title,
            'status': status,
            'detail': detail,
            'instance': instance
        }

        if validation_errors:
            error_response['errors'] = validation_errors

        links = {
            'help': self.link_builder.build_link(
                f"/docs/errors#{error_type}",
                title="Error documentation"
            )
        }

        if error_type == "validation-error":
            links['schema'] = self.link_builder.build_link(
                "/openapi/openapi.json",
                title="API schema"
            )
        elif error_type == "authentication-required":
            links['login'] = self.link_builder.build_link(
                "/api/auth/login",
                method="POST",
                content_type="application/json",
                title="Login"
            )

        error_response['_links'] = _dump_links(links)
        return error_response


class HalFormatter:
    """Entry point used by routes: one format_* method per resource kind."""

    def __init__(self, base_url: str):
        self.builder = HalResponseBuilder(base_url)

    @property
    def affordances(self) -> AffordanceLinkBuilder:
        return self.builder.affordance_builder

    def format_resource(self, data: Dict[str, Any], self_path: str) -> Dict[str, Any]:
        """Format any resource with just a self link."""
        return self.builder.build_resource_response(data, self_path)

    def format_collection(
        self,
        items: List[Dict[str, Any]],
        total: int,
        page: int,
        page_size: int,
        collection_path: str,
        filters: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        return self.builder.build_collection_response(
            items, total, page, page_size, collection_path, filters
        )

    def format_cursor_collection(
        self,
        items: List[Dict[str, Any]],
        collection_path: str,
        after: Optional[str],
        next_cursor: Optional[str]
    ) -> Dict[str, Any]:
        return self.builder.build_cursor_collection_response(items, collection_path, after, next_cursor)

    def format_list(self, items: List[Dict[str, Any]], collection_path: str) -> Dict[str, Any]:
        return self.builder.build_list_response(items, collection_path)

    def format_farm(self, farm: Dict[str, Any]) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            farm, links=self.affordances.build_farm_affordances(farm['id'])
        )

    def format_listing(self, listing: Dict[str, Any], current_user_id: Optional[str]) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            listing,
            links=self.affordances.build_listing_affordances(listing['id'], listing, current_user_id)
        )

    def format_order(self, order: Dict[str, Any], allowed_statuses: Iterable[str]) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            order, links=self.affordances.build_order_affordances(order['id'], allowed_statuses)
        )

    def format_application(self, application: Dict[str, Any], is_reviewer: bool) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            application,
            links=self.affordances.build_application_affordances(
                application['id'], application.get('status', ''), is_reviewer
            )
        )

    def format_claim(self, claim: Dict[str, Any], is_insurer: bool) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            claim,
            links=self.affordances.build_claim_affordances(
                claim['claimId'], claim.get('status', ''), is_insurer
            )
        )

    def format_post(self, post: Dict[str, Any]) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            post, links=self.affordances.build_post_affordances(post['id'], post['topicId'])
        )

    def format_notification(self, notification: Dict[str, Any]) -> Dict[str, Any]:
        return self.builder.build_resource_response(
            notification,
            links=self.affordances.build_notification_affordances(
                notification['id'], notification.get('status', '')
            )
        )


def create_hal_formatter(base_url: str) -> HalFormatter:
    return HalFormatter(base_url)
