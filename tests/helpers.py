API = "/api/v1"
ADMIN_EMAIL = "admin@shop.com"
ADDRESS = {"street": "1 Main St", "city": "Springfield", "country": "US", "zipCode": "12345"}


def register(client, email="jane@example.com", password="secret123", first_name="Jane", last_name="Doe"):
    body = {"firstName": first_name, "lastName": last_name, "email": email, "password": password}
    return client.post(f"{API}/auth/register", json=body)


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def add_to_cart(client, headers, product_id, quantity):
    return client.post(f"{API}/cart/add", json={"productId": product_id, "quantity": quantity}, headers=headers)
