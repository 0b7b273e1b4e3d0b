from unittest.mock import patch

from fastapi.testclient import TestClient

from server import server


def test_lifespan_initializes_and_shuts_down_membership_service():
    with patch("server.lifespan.service") as mock_service:
        mock_service.get_gitlab_config.return_value.configured = False
        with TestClient(server.handler) as client:
            resp = client.get("/health")

    assert resp.status_code == 200
    mock_service.initialize.assert_called_once_with()
    mock_service.shutdown.assert_called_once_with()
