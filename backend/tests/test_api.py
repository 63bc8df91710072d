import pytest
from starlette.websockets import WebSocketDisconnect

from marketplace.auth.jwt_handler import create_access_token

NEW_POST = {
    "title": "Desk lamp",
    "description": "Adjustable arm, warm bulb included",
    "startingPrice": 15,
    "auctionDuration": 48,
    "buyNowPrice": 40,
    "images": ["https://img.example.com/lamp.jpg"],
}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "connections": 0, "sweeper": False, "lastSweepAt": None}


class TestPosts:
    def test_create_post_returns_camel_case(self, client, seller, auth_headers):
        response = client.post("/posts/add/post", json=NEW_POST, headers=auth_headers(seller))

        assert response.status_code == 201
        body = response.json()
        assert body["currentPrice"] == 15
        assert body["buyNowPrice"] == 40
        assert body["status"] == "live"
        assert body["owner"]["username"] == "seller"

    def test_create_post_requires_an_image(self, client, seller, auth_headers):
        response = client.post("/posts/add/post", json={**NEW_POST, "images": []}, headers=auth_headers(seller))

        assert response.status_code == 400
        assert response.json()["detail"] == "At least one image is required"

    def test_create_post_requires_a_token(self, client):
        response = client.post("/posts/add/post", json=NEW_POST)

        assert response.status_code == 401
        assert response.json()["detail"] == "No token, authorization denied"

    def test_bad_token_is_rejected(self, client):
        response = client.post("/posts/add/post", json=NEW_POST, headers={"Authorization": "Bearer not-a-jwt"})

        assert response.status_code == 401
        assert response.json()["detail"] == "Token is not valid"

    def test_live_only_filter(self, client, make_post, expired_post):
        live = make_post(title="Still running")

        response = client.get("/posts/get/post", params={"liveOnly": "true"})

        assert [p["id"] for p in response.json()] == [live.id]

    def test_expired_auction_details(self, client, expired_post):
        body = client.get(f"/posts/auction/{expired_post.id}").json()

        assert body["isExpired"] is True
        assert body["isLive"] is False
        assert body["timeRemaining"] == 0
        assert body["status"] == "live"

    def test_end_auction_before_end_time(self, client, make_post):
        post = make_post()

        response = client.post(f"/posts/end-auction/{post.id}")

        assert response.status_code == 400
        assert response.json()["detail"] == "Auction has not expired yet"

    def test_end_expired_auction_without_bids(self, client, expired_post):
        response = client.post(f"/posts/end-auction/{expired_post.id}")

        assert response.status_code == 200
        assert response.json()["message"] == "Auction expired with no bids"
        assert response.json()["status"] == "expired"


class TestBids:
    def test_place_bid(self, client, make_post, alice, auth_headers):
        post = make_post(starting_price=10)

        response = client.post(f"/bids/{post.id}", json={"amount": 12.5}, headers=auth_headers(alice))

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Bid placed successfully"
        assert body["currentPrice"] == 12.5
        assert body["bid"]["isWinning"] is True

    def test_low_bid_is_rejected(self, client, make_post, alice, auth_headers):
        post = make_post(starting_price=10)

        response = client.post(f"/bids/{post.id}", json={"amount": 5}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["detail"].startswith("Bid must")

    def test_bidders_are_visible_to_owner_only(self, client, make_post, seller, alice, bob, auth_headers):
        post = make_post(starting_price=10)
        client.post(f"/bids/{post.id}", json={"amount": 20}, headers=auth_headers(alice))
        client.post(f"/bids/{post.id}", json={"amount": 25}, headers=auth_headers(bob))
        client.post(f"/bids/{post.id}", json={"amount": 30}, headers=auth_headers(alice))

        assert client.get(f"/bids/bidders/{post.id}", headers=auth_headers(bob)).status_code == 403

        bidders = client.get(f"/bids/bidders/{post.id}", headers=auth_headers(seller)).json()
        assert [(b["bidder"]["username"], b["highestBid"], b["totalBids"]) for b in bidders] == [
            ("alice", 30, 2),
            ("bob", 25, 1),
        ]


class TestSaleFlow:
    def test_buy_now_opens_sale_chat_and_notifies(self, client, make_post, seller, alice, bob, auth_headers):
        post = make_post(starting_price=10, buy_now_price=50)

        sale = client.post(f"/posts/buy-now/{post.id}", headers=auth_headers(bob))
        assert sale.status_code == 200
        assert sale.json()["soldPrice"] == 50
        chat_id = sale.json()["chatId"]

        chats = client.get("/sale-chats/", headers=auth_headers(bob)).json()
        assert [c["id"] for c in chats] == [chat_id]
        assert client.get(f"/sale-chats/{chat_id}", headers=auth_headers(alice)).status_code == 403

        sent = client.post(
            f"/sale-chats/{chat_id}/messages",
            json={"message": "Can I pick it up tomorrow?"},
            headers=auth_headers(bob),
        )
        assert sent.status_code == 200
        assert sent.json()["chatMessage"]["sender"]["username"] == "bob"

        notices = client.get("/notifications/", headers=auth_headers(seller)).json()
        assert sorted(n["type"] for n in notices) == ["chat", "sale", "system"]
        unread = client.get("/notifications/unread-count", headers=auth_headers(seller)).json()
        assert unread == {"unreadCount": 3}

        marked = client.put("/notifications/read-all", headers=auth_headers(seller))
        assert marked.json()["message"] == "Marked 3 notifications as read"
        assert client.get("/notifications/unread-count", headers=auth_headers(seller)).json() == {"unreadCount": 0}

    def test_sold_post_rejects_further_bids(self, client, make_post, alice, bob, auth_headers):
        post = make_post(starting_price=10, buy_now_price=50)
        client.post(f"/posts/buy-now/{post.id}", headers=auth_headers(bob))

        response = client.post(f"/bids/{post.id}", json={"amount": 60}, headers=auth_headers(alice))

        assert response.status_code == 400
        assert response.json()["detail"] == "This post is not available for bidding"


class TestRealtime:
    def test_handshake_requires_token(self, client):
        with pytest.raises(WebSocketDisconnect) as exc_info:
            with client.websocket_connect("/ws"):
                pass

        assert exc_info.value.code == 1008

    def test_handshake_rejects_unknown_user(self, client):
        token = create_access_token(404, "ghost")

        with pytest.raises(WebSocketDisconnect):
            with client.websocket_connect(f"/ws?token={token}"):
                pass

    def test_join_and_chat(self, client, make_post, alice):
        post = make_post()
        token = create_access_token(alice.id, alice.username)

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.send_json({"type": "join-auction", "data": {"postId": post.id}})
            joined = ws.receive_json()
            assert joined["type"] == "room-participants"
            assert joined["data"]["participants"] == [alice.id]

            ws.send_json({"type": "send-message", "data": {"postId": post.id, "message": " Is this still on? "}})
            message = ws.receive_json()
            assert message["type"] == "new-message"
            assert message["data"]["message"] == "Is this still on?"
            assert message["data"]["user"]["profileImage"] == alice.profile_image

            ws.send_text("not json")
            assert ws.receive_json() == {"type": "error", "data": {"message": "Invalid message format"}}

        history = client.get(f"/chat/messages/{post.id}").json()
        assert history["isActive"] is True
        assert [m["message"] for m in history["messages"]] == ["Is this still on?"]

    def test_sold_auction_room_cannot_be_joined(self, client, make_post, alice, bob, auth_headers):
        post = make_post(buy_now_price=50)
        client.post(f"/posts/buy-now/{post.id}", headers=auth_headers(bob))
        token = create_access_token(alice.id, alice.username)

        with client.websocket_connect(f"/ws?token={token}") as ws:
            ws.send_json({"type": "join-auction", "data": {"postId": post.id}})
            frame = ws.receive_json()

        assert frame["type"] == "error"
        assert "disabled" in frame["data"]["message"]
